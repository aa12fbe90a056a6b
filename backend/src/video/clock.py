"""Wall-clock playback position for a video source."""

import math
import threading
import time
from typing import Callable


class PlaybackClock:
    """Derives the video frame to display from elapsed playback time.

    The clock runs independently of conversion speed: if conversion can't keep
    up, frames are skipped rather than playback slowing down.
    """

    def __init__(self, fps: float = 30.0, time_fn: Callable[[], float] = time.monotonic):
        self._time_fn = time_fn
        self._fps: float = 30.0
        self.set_fps(fps)
        self._lock = threading.Lock()
        self._offset_s: float = 0.0
        self._started_at: float | None = None

    @property
    def fps(self) -> float:
        return self._fps

    def set_fps(self, fps: float) -> None:
        """Set video frame rate. Clamps to [1.0, 240.0]."""
        self._fps = max(1.0, min(240.0, fps))

    @property
    def is_playing(self) -> bool:
        return self._started_at is not None

    @property
    def position_seconds(self) -> float:
        with self._lock:
            if self._started_at is None:
                return self._offset_s
            return self._offset_s + (self._time_fn() - self._started_at)

    @property
    def target_frame_index(self) -> int:
        """floor(position * fps) — never ahead of the clock."""
        return math.floor(self.position_seconds * self._fps)

    def start(self) -> None:
        with self._lock:
            if self._started_at is None:
                self._started_at = self._time_fn()

    def pause(self) -> None:
        with self._lock:
            if self._started_at is not None:
                self._offset_s += self._time_fn() - self._started_at
                self._started_at = None

    def reset(self) -> None:
        with self._lock:
            self._offset_s = 0.0
            if self._started_at is not None:
                self._started_at = self._time_fn()

    def sync_state(self) -> dict:
        return {
            "position_s": round(self.position_seconds, 6),
            "target_frame": self.target_frame_index,
            "is_playing": self.is_playing,
            "fps": self._fps,
        }
