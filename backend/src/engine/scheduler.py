"""Frame-tick scheduling — the display-frame callback capability.

Callbacks requested during a tick run on the following tick, never the
current one, so a callback that reschedules itself runs once per tick.
"""

import itertools
import logging
import os
import threading
import time
from typing import Callable

import sentry_sdk

logger = logging.getLogger(__name__)

DEFAULT_TICK_HZ = 60.0

FrameCallback = Callable[[float], None]


class FrameScheduler:
    """Schedule-next-tick / cancel-pending-tick capability."""

    def request(self, callback: FrameCallback) -> int:
        """Run callback(timestamp) on the next tick. Returns a handle."""
        raise NotImplementedError

    def cancel(self, handle: int | None) -> None:
        """Drop a pending callback. Unknown or already-run handles are ignored."""
        raise NotImplementedError

    def close(self) -> None:
        pass


def _tick_hz_from_env() -> float:
    raw = os.environ.get("GLYPHCAST_TICK_HZ", "")
    try:
        hz = float(raw) if raw else DEFAULT_TICK_HZ
    except ValueError:
        logger.warning("Invalid GLYPHCAST_TICK_HZ=%r, using %s", raw, DEFAULT_TICK_HZ)
        hz = DEFAULT_TICK_HZ
    return max(1.0, min(240.0, hz))


class ThreadedFrameScheduler(FrameScheduler):
    """Ticks on a daemon thread at a fixed rate while callbacks are pending."""

    def __init__(self, fps: float | None = None):
        self.fps = fps if fps is not None else _tick_hz_from_env()
        self._interval = 1.0 / self.fps
        self._cond = threading.Condition()
        self._pending: dict[int, FrameCallback] = {}
        self._inflight: dict[int, FrameCallback] = {}
        self._ids = itertools.count(1)
        self._running = True
        self._last_tick = 0.0
        self._thread = threading.Thread(
            target=self._run, name="frame-scheduler", daemon=True
        )
        self._thread.start()

    @property
    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending)

    def request(self, callback: FrameCallback) -> int:
        with self._cond:
            if not self._running:
                raise RuntimeError("scheduler is closed")
            handle = next(self._ids)
            self._pending[handle] = callback
            self._cond.notify()
            return handle

    def cancel(self, handle: int | None) -> None:
        if handle is None:
            return
        with self._cond:
            self._pending.pop(handle, None)
            self._inflight.pop(handle, None)

    def _run(self):
        while True:
            with self._cond:
                while self._running and not self._pending:
                    self._cond.wait()
                if not self._running:
                    return

            delay = self._last_tick + self._interval - time.monotonic()
            if delay > 0:
                time.sleep(delay)

            with self._cond:
                self._inflight, self._pending = self._pending, {}
            self._last_tick = time.monotonic()

            # Lock released while running: callbacks may request/cancel freely
            for handle in sorted(self._inflight):
                with self._cond:
                    callback = self._inflight.pop(handle, None)
                if callback is None:
                    continue
                try:
                    callback(self._last_tick)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Frame callback %d failed: %s", handle, type(e).__name__)

    def close(self) -> None:
        with self._cond:
            self._running = False
            self._pending.clear()
            self._inflight.clear()
            self._cond.notify_all()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
