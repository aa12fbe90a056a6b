"""Conversion session — the surface the UI layer drives.

Owns the single current source, the live settings store, the playback loop
and the fit controller. All core work (single-shot conversions, loop ticks,
fit recomputation) runs under one re-entrant lock, so the command thread and
the frame-tick thread behave like one cooperative event loop.
"""

import logging
import threading
from typing import Callable

from engine.converter import convert
from engine.fit import ContentBox, FitController, FitTransform, TextMetrics, Viewport
from engine.playback import PlaybackLoop
from engine.scheduler import FrameScheduler
from engine.settings import ConversionSettings, SettingsStore
from sources import SourceFrame, open_source

logger = logging.getLogger(__name__)


class AsciiSession:
    def __init__(
        self,
        scheduler: FrameScheduler,
        settings: SettingsStore | None = None,
        metrics: TextMetrics | None = None,
        on_output: Callable[[str, int], None] | None = None,
    ):
        self._lock = threading.RLock()
        self.settings = settings or SettingsStore()
        self.metrics = metrics or TextMetrics.from_font()
        self._on_output = on_output
        self._source: SourceFrame | None = None
        self._text = ""
        self._seq = 0
        self._content = ContentBox(0, 0)
        self._viewport = Viewport(0, 0)
        self.fit = FitController(scheduler, lock=self._lock)
        self.playback = PlaybackLoop(scheduler, publish=self._publish, lock=self._lock)

    @property
    def source(self) -> SourceFrame | None:
        return self._source

    @property
    def media_type(self) -> str | None:
        return None if self._source is None else self._source.kind

    @property
    def text(self) -> str:
        return self._text

    @property
    def transform(self) -> FitTransform:
        return self.fit.transform

    # --- media lifecycle ---

    def load(self, path: str) -> bool:
        """Load a media file. Raises UnsupportedMediaError for other files.

        Returns False if the file could not be decoded.
        """
        source = open_source(path)
        return self.load_source(source)

    def load_source(self, source: SourceFrame) -> bool:
        with self._lock:
            # Retire the old loop before the old source goes away
            self.playback.stop()
            self._retire_source()
            self._source = source

            source.ready.subscribe(lambda: self._on_ready(source))
            try:
                loaded = source.is_ready or source.load()
            except BaseException:
                self._source = None
                source.close()
                raise
            if not loaded:
                logger.warning("Media load failed (%s)", source.kind)
                self._source = None
                source.close()
                return False

            if source.kind == "video":
                self.playback.start(source, self.settings)
            return True

    def _on_ready(self, source: SourceFrame):
        with self._lock:
            if source is self._source:
                self.refresh()

    def _retire_source(self):
        self.fit.cancel()
        if self._source is not None:
            self._source.close()
            self._source = None
        self._text = ""
        self._content = ContentBox(0, 0)

    def play(self) -> bool:
        with self._lock:
            if self._source is None or self._source.kind != "video":
                return False
            if self.playback.is_playing:
                return True
            return self.playback.start(self._source, self.settings)

    def pause(self):
        with self._lock:
            self.playback.stop()

    def close(self):
        with self._lock:
            self.playback.stop()
            self._retire_source()

    # --- settings & layout ---

    def update_settings(self, **changes) -> ConversionSettings:
        """Apply settings changes and re-render the current frame."""
        current = self.settings.update(**changes)
        self.refresh()
        return current

    def toggle_invert(self) -> ConversionSettings:
        current = self.settings.toggle_invert()
        self.refresh()
        return current

    def toggle_ramp(self) -> ConversionSettings:
        current = self.settings.toggle_ramp()
        self.refresh()
        return current

    def resize(self, width: float, height: float):
        with self._lock:
            self._viewport = Viewport(width, height)
            if self._source is not None:
                self.fit.request(self._content, self._viewport)

    # --- output ---

    def refresh(self) -> str:
        """Single-shot conversion of the current frame with current settings."""
        with self._lock:
            if self._source is None:
                return ""
            text = convert(self._source, self.settings.snapshot())
            self._publish(text)
            return text

    def _publish(self, text: str):
        with self._lock:
            self._text = text
            self._seq += 1
            self._content = self.metrics.measure(text)
            self.fit.request(self._content, self._viewport)
            seq = self._seq
        if self._on_output is not None:
            self._on_output(text, seq)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "media_type": self.media_type,
                "source": None if self._source is None else self._source.describe(),
                "text": self._text,
                "seq": self._seq,
                "scale": self.fit.scale,
                "transform": self.fit.transform.css,
                "playing": self.playback.is_playing,
                "settings": self.settings.snapshot().to_dict(),
            }
