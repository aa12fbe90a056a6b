"""Playback loop — converts the current video frame once per frame tick.

State machine over {STOPPED, PLAYING}. Each tick reads the settings provider
afresh, so slider changes apply on the next frame of a long-running loop.
At most one tick callback is outstanding per loop.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Protocol

from engine.converter import convert
from engine.scheduler import FrameScheduler
from engine.settings import ConversionSettings

logger = logging.getLogger(__name__)


class SettingsProvider(Protocol):
    def snapshot(self) -> ConversionSettings: ...


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"


class PlaybackLoop:
    def __init__(
        self,
        scheduler: FrameScheduler,
        publish: Callable[[str], None],
        lock: "threading.RLock | None" = None,
    ):
        self._scheduler = scheduler
        self._publish = publish
        self._lock = lock or threading.RLock()
        self._state = PlaybackState.STOPPED
        self._source = None
        self._settings: SettingsProvider | None = None
        self._pending_handle: int | None = None
        # Bumped on every start/stop; ticks from an older generation are dropped
        self._generation = 0
        self.frames_published = 0

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    @property
    def pending_handle(self) -> int | None:
        return self._pending_handle

    @property
    def source(self):
        return self._source

    def start(self, source, settings: SettingsProvider) -> bool:
        """Enter PLAYING on source. Returns False if playback failed to start."""
        with self._lock:
            self.stop()
            try:
                started = source.play()
            except Exception as e:
                logger.warning("Playback start failed: %s", type(e).__name__)
                logger.debug("Playback start exception detail: %s", e)
                started = False
            if not started:
                logger.warning("Playback did not start; staying stopped")
                return False

            self._source = source
            self._settings = settings
            self._state = PlaybackState.PLAYING
            self._generation += 1
            self._schedule()
            logger.info("Playback started (%s)", getattr(source, "kind", "unknown"))
            return True

    def stop(self):
        """Cancel the pending tick and pause the source. Safe to call repeatedly."""
        with self._lock:
            self._generation += 1
            self._scheduler.cancel(self._pending_handle)
            self._pending_handle = None
            if self._state is PlaybackState.PLAYING:
                logger.info("Playback stopped after %d frames", self.frames_published)
            self._state = PlaybackState.STOPPED
            source, self._source = self._source, None
            self._settings = None
        if source is not None:
            source.pause()

    def _schedule(self):
        generation = self._generation
        self._pending_handle = self._scheduler.request(
            lambda timestamp: self._tick(generation)
        )

    def _tick(self, generation: int):
        with self._lock:
            if generation != self._generation or not self.is_playing:
                return
            self._pending_handle = None
            text = convert(self._source, self._settings.snapshot())
            self._schedule()
            self.frames_published += 1
            self._publish(text)
