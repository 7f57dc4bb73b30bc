class RSError(Exception):
	pass


class RSEngineUnavailable(RSError):
	pass


class RSEngineError(RSError):
	pass


class RSUnsupportedPlatform(RSError):
	pass


class RSContainerNotFound(RSError):
	def __init__(self, message: str, found: list[str] | None = None):
		super().__init__(message)
		self.found = found or []


class RSImageNotFound(RSError):
	def __init__(self, message: str, found: list[str] | None = None):
		super().__init__(message)
		self.found = found or []


class RSSessionError(RSError):
	pass


class RSRemoteError(RSError):
	pass
