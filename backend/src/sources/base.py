"""Source frame contract and the one-shot ready signal."""

import logging
import threading
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)


class UnsupportedMediaError(ValueError):
    """Raised when a file is neither a still image nor a video."""


class ReadySignal:
    """Fires at most once per load: Idle → Ready.

    Callbacks subscribed after the signal fired are invoked immediately.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._fired = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def fired(self) -> bool:
        return self._fired

    def subscribe(self, callback: Callable[[], None]):
        with self._lock:
            if not self._fired:
                self._callbacks.append(callback)
                return
        callback()

    def fire(self) -> bool:
        """Transition to Ready. Returns False if already fired."""
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return True


class SourceFrame:
    """A decoded visual surface the converter can read pixels from.

    Subclasses set ``kind`` and implement ``load`` and ``read_pixels``.
    """

    kind = "unknown"

    def __init__(self):
        self.ready = ReadySignal()

    @property
    def width(self) -> int:
        raise NotImplementedError

    @property
    def height(self) -> int:
        raise NotImplementedError

    @property
    def is_ready(self) -> bool:
        return self.ready.fired and self.width > 0 and self.height > 0

    def load(self) -> bool:
        raise NotImplementedError

    def read_pixels(self) -> np.ndarray:
        """Current frame as an (H, W, 4) uint8 RGBA array."""
        raise NotImplementedError

    def play(self) -> bool:
        """Start playback. Returns True if playback started."""
        return False

    def pause(self):
        pass

    def close(self):
        pass

    def describe(self) -> dict:
        return {
            "media_type": self.kind,
            "width": self.width,
            "height": self.height,
            "ready": self.is_ready,
        }
