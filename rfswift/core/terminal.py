"""Local terminal handling: raw mode, size and byte level stdio."""

from __future__ import annotations

import os
import select
import sys
import time
from contextlib import contextmanager
from typing import BinaryIO, Iterator, Optional, TextIO, Union

from rfswift.core.resize import ResizeEventSource, TerminalSize, make_resize_source

Stream = Union[TextIO, BinaryIO]

STD_INPUT_HANDLE = -10
ENABLE_PROCESSED_INPUT = 0x0001
ENABLE_LINE_INPUT = 0x0002
ENABLE_ECHO_INPUT = 0x0004
ENABLE_VIRTUAL_TERMINAL_INPUT = 0x0200


def is_terminal(stream: Stream) -> bool:
	try:
		return os.isatty(stream.fileno())
	except (AttributeError, ValueError, OSError):
		return False


@contextmanager
def _posix_raw(fd: int) -> Iterator[None]:
	import termios
	import tty

	previous = termios.tcgetattr(fd)
	try:
		tty.setraw(fd)
		yield
	finally:
		termios.tcsetattr(fd, termios.TCSADRAIN, previous)


@contextmanager
def _windows_raw() -> Iterator[None]:
	import ctypes

	kernel32 = ctypes.windll.kernel32
	handle = kernel32.GetStdHandle(STD_INPUT_HANDLE)
	mode = ctypes.c_uint32()
	if not kernel32.GetConsoleMode(handle, ctypes.byref(mode)):
		raise ctypes.WinError()
	previous = mode.value
	raw = (previous & ~(ENABLE_PROCESSED_INPUT | ENABLE_LINE_INPUT | ENABLE_ECHO_INPUT)) | ENABLE_VIRTUAL_TERMINAL_INPUT
	try:
		kernel32.SetConsoleMode(handle, raw)
		yield
	finally:
		kernel32.SetConsoleMode(handle, previous)


def raw_terminal(fd: int):
	"""Context manager putting ``fd`` in raw mode and restoring it on exit."""
	if os.name == "nt":
		return _windows_raw()
	return _posix_raw(fd)


class LocalTerminal:
	"""The process' own stdio as seen by an interactive session."""

	def __init__(self, stdin: Optional[Stream] = None, stdout: Optional[Stream] = None, stderr: Optional[Stream] = None):
		self.stdin = stdin or sys.stdin
		self.stdout = stdout or sys.stdout
		self.stderr = stderr or sys.stderr

	def is_interactive(self) -> bool:
		return is_terminal(self.stdin)

	def raw_mode(self):
		return raw_terminal(self.stdin.fileno())

	def size(self) -> Optional[TerminalSize]:
		# stdout answers on every platform, stdin does not on Windows consoles
		for stream in (self.stdout, self.stdin):
			try:
				size = os.get_terminal_size(stream.fileno())
			except (AttributeError, ValueError, OSError):
				continue
			return size.columns, size.lines
		return None

	def resize_source(self) -> ResizeEventSource:
		return make_resize_source(self.size)

	def input_ready(self, timeout: float) -> bool:
		"""Wait up to ``timeout`` seconds for stdin to become readable."""
		if os.name == "nt":
			return _windows_input_ready(self.stdin, timeout)
		readable, _, _ = select.select([self.stdin.fileno()], [], [], timeout)
		return bool(readable)

	def read_input(self, n: int = 4096) -> bytes:
		return os.read(self.stdin.fileno(), n)

	def write_output(self, data: bytes) -> None:
		_write(self.stdout, data)

	def write_error(self, data: bytes) -> None:
		_write(self.stderr, data)


def _windows_input_ready(stream: Stream, timeout: float) -> bool:
	import msvcrt

	# select only accepts sockets on Windows
	if not is_terminal(stream):
		return True
	if msvcrt.kbhit():
		return True
	time.sleep(timeout)
	return msvcrt.kbhit()


def _write(stream: Stream, data: bytes) -> None:
	target = getattr(stream, "buffer", stream)
	target.write(data)
	target.flush()
