from __future__ import annotations

import logging
import signal
import threading
from abc import ABC, abstractmethod
from typing import Callable, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

# (columns, rows)
TerminalSize = Tuple[int, int]
SizeGetter = Callable[[], Optional[TerminalSize]]

POLL_INTERVAL = 0.25


class ResizePropagator:
	"""Forwards the local size to the remote tty, skipping unchanged sizes."""

	def __init__(self, resize: Callable[[int, int], None]):
		self._resize = resize
		self._last: Optional[TerminalSize] = None
		self._lock = threading.Lock()

	@property
	def last(self) -> Optional[TerminalSize]:
		return self._last

	def propagate(self, size: Optional[TerminalSize], force: bool = False) -> bool:
		if size is None:
			return False
		with self._lock:
			if not force and size == self._last:
				return False
			self._last = size
			self._resize(*size)
		return True


class ResizeEventSource(ABC):
	"""Yields the terminal size each time it may have changed."""

	def __init__(self, get_size: SizeGetter):
		self._get_size = get_size

	@abstractmethod
	def start(self) -> None:
		pass

	@abstractmethod
	def events(self) -> Iterator[TerminalSize]:
		pass

	@abstractmethod
	def close(self) -> None:
		pass


class SignalResizeSource(ResizeEventSource):
	"""SIGWINCH driven; must be started from the main thread."""

	def __init__(self, get_size: SizeGetter):
		super().__init__(get_size)
		self._pending = threading.Event()
		self._closed = False
		self._previous = None
		self._installed = False

	def _on_signal(self, signum, frame) -> None:
		self._pending.set()

	def start(self) -> None:
		self._previous = signal.signal(signal.SIGWINCH, self._on_signal)
		self._installed = True

	def events(self) -> Iterator[TerminalSize]:
		while True:
			self._pending.wait()
			self._pending.clear()
			if self._closed:
				return
			size = self._get_size()
			if size:
				yield size

	def close(self) -> None:
		if self._installed:
			signal.signal(signal.SIGWINCH, self._previous if self._previous is not None else signal.SIG_DFL)
			self._installed = False
		self._closed = True
		self._pending.set()


class PollingResizeSource(ResizeEventSource):
	"""Timer driven, for consoles that never signal a size change."""

	def __init__(self, get_size: SizeGetter, interval: float = POLL_INTERVAL):
		super().__init__(get_size)
		self._interval = interval
		self._stop = threading.Event()

	def start(self) -> None:
		pass

	def events(self) -> Iterator[TerminalSize]:
		while not self._stop.wait(self._interval):
			size = self._get_size()
			if size:
				yield size

	def close(self) -> None:
		self._stop.set()


def make_resize_source(get_size: SizeGetter) -> ResizeEventSource:
	if hasattr(signal, "SIGWINCH") and threading.current_thread() is threading.main_thread():
		return SignalResizeSource(get_size)
	return PollingResizeSource(get_size)


def watch_resizes(source: ResizeEventSource, propagator: ResizePropagator) -> None:
	for size in source.events():
		propagator.propagate(size)
