from __future__ import annotations

import os
import signal
import threading

import pytest

from rfswift.core.resize import PollingResizeSource, ResizePropagator, SignalResizeSource, make_resize_source, watch_resizes


def test_unchanged_size_is_not_propagated():
	calls = []
	propagator = ResizePropagator(lambda cols, rows: calls.append((cols, rows)))
	for size in [(80, 24), (80, 24), (120, 30)]:
		propagator.propagate(size)
	assert calls == [(80, 24), (120, 30)]
	assert propagator.last == (120, 30)


def test_forced_propagation_repeats():
	calls = []
	propagator = ResizePropagator(lambda cols, rows: calls.append((cols, rows)))
	propagator.propagate((80, 24))
	propagator.propagate((80, 24), force=True)
	propagator.propagate(None)
	assert calls == [(80, 24), (80, 24)]


@pytest.mark.timeout(10)
def test_polling_source_feeds_propagator_until_closed():
	sizes = iter([(80, 24), (80, 24), (120, 30)])
	calls = []
	seen_change = threading.Event()

	def get_size():
		return next(sizes, (120, 30))

	def resize(cols, rows):
		calls.append((cols, rows))
		if (cols, rows) == (120, 30):
			seen_change.set()

	source = PollingResizeSource(get_size, interval=0.01)
	propagator = ResizePropagator(resize)
	source.start()
	watcher = threading.Thread(target=watch_resizes, args=(source, propagator), daemon=True)
	watcher.start()
	assert seen_change.wait(5)
	source.close()
	watcher.join(timeout=5)
	assert not watcher.is_alive()
	assert calls == [(80, 24), (120, 30)]


@pytest.mark.timeout(10)
@pytest.mark.skipif(not hasattr(signal, "SIGWINCH"), reason="no SIGWINCH on this platform")
def test_sigwinch_source_propagates_change_and_restores_handler():
	current = [(80, 24)]
	calls = []
	changed = threading.Event()
	previous = signal.getsignal(signal.SIGWINCH)

	def resize(cols, rows):
		calls.append((cols, rows))
		if (cols, rows) == (120, 30):
			changed.set()

	source = make_resize_source(lambda: current[0])
	assert isinstance(source, SignalResizeSource)
	propagator = ResizePropagator(resize)
	propagator.propagate(current[0], force=True)
	source.start()
	watcher = threading.Thread(target=watch_resizes, args=(source, propagator), daemon=True)
	watcher.start()
	try:
		current[0] = (120, 30)
		os.kill(os.getpid(), signal.SIGWINCH)
		assert changed.wait(5)
	finally:
		source.close()
	watcher.join(timeout=5)

	assert not watcher.is_alive()
	assert calls == [(80, 24), (120, 30)]
	assert signal.getsignal(signal.SIGWINCH) == previous
