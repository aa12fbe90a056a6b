"""Fit controller — uniformly scale the rendered text block into the viewport.

The text is never reflowed. The block is scaled about its centre by
s = min((vw - PADDING) / cw, (vh - PADDING) / ch). A degenerate layout
(anything zero, or a non-positive result) keeps the previous scale.
"""

import logging
import math
import os
import threading
from dataclasses import dataclass
from typing import Callable

from PIL import ImageFont

from engine.scheduler import FrameScheduler

logger = logging.getLogger(__name__)

SCALE_PADDING = 20
DEFAULT_FONT_SIZE = 12

_MONO_FONTS = [
    "/System/Library/Fonts/Menlo.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationMono-Regular.ttf",
    "C:\\Windows\\Fonts\\consola.ttf",
]

_font_cache: dict[int, object] = {}


@dataclass(frozen=True)
class ContentBox:
    width: float
    height: float


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float


@dataclass(frozen=True)
class FitTransform:
    scale: float = 1.0

    @property
    def css(self) -> str:
        return f"translate(-50%, -50%) scale({self.scale})"


def compute_scale(content: ContentBox, viewport: Viewport) -> float | None:
    """Scale that fits content inside viewport, or None for a degenerate layout."""
    if not viewport.width or not viewport.height:
        return None
    if not content.width or not content.height:
        return None
    scale_x = (viewport.width - SCALE_PADDING) / content.width
    scale_y = (viewport.height - SCALE_PADDING) / content.height
    scale = min(scale_x, scale_y)
    if not math.isfinite(scale) or scale <= 0:
        return None
    return scale


def _get_font(size: int):
    """Try to load a monospace font, fall back to default. Results are cached."""
    if size in _font_cache:
        return _font_cache[size]
    for fp in _MONO_FONTS:
        try:
            font = ImageFont.truetype(fp, size)
            _font_cache[size] = font
            return font
        except (OSError, IOError):
            continue
    font = ImageFont.load_default()
    _font_cache[size] = font
    return font


@dataclass(frozen=True)
class TextMetrics:
    """Pixel size of one glyph cell in the display font."""

    char_width: float
    line_height: float

    @classmethod
    def from_font(cls, font_size: int | None = None) -> "TextMetrics":
        if font_size is None:
            font_size = int(os.environ.get("GLYPHCAST_FONT_SIZE", DEFAULT_FONT_SIZE))
        font = _get_font(font_size)
        char_width = font.getlength("M")
        _, top, _, bottom = font.getbbox("Mg|")
        line_height = max(bottom - top, font_size)
        return cls(char_width=max(1.0, float(char_width)), line_height=float(line_height))

    def measure(self, text: str) -> ContentBox:
        """Laid-out size of a newline-terminated text block."""
        if not text:
            return ContentBox(0, 0)
        lines = text.split("\n")
        if lines[-1] == "":
            lines.pop()
        widest = max(len(line) for line in lines)
        return ContentBox(widest * self.char_width, len(lines) * self.line_height)


class FitController:
    """Keeps the last valid fit transform and recomputes it on demand.

    ``request`` coalesces bursts (resize storms, back-to-back frames) into at
    most one recomputation per frame tick, using the latest inputs.
    """

    def __init__(
        self,
        scheduler: FrameScheduler,
        lock: "threading.RLock | None" = None,
        on_change: Callable[[FitTransform], None] | None = None,
    ):
        self._scheduler = scheduler
        self._lock = lock or threading.RLock()
        self._on_change = on_change
        self._transform = FitTransform()
        self._pending_handle: int | None = None
        self._latest: tuple[ContentBox, Viewport] | None = None

    @property
    def transform(self) -> FitTransform:
        return self._transform

    @property
    def scale(self) -> float:
        return self._transform.scale

    @property
    def pending(self) -> bool:
        return self._pending_handle is not None

    def fit(self, content: ContentBox, viewport: Viewport) -> float:
        """Recompute now. Returns the scale in effect afterwards."""
        with self._lock:
            scale = compute_scale(content, viewport)
            if scale is None:
                logger.debug(
                    "Skipping fit for degenerate layout content=%s viewport=%s",
                    content,
                    viewport,
                )
                return self._transform.scale
            if scale != self._transform.scale:
                self._transform = FitTransform(scale)
                if self._on_change is not None:
                    self._on_change(self._transform)
            return scale

    def request(self, content: ContentBox, viewport: Viewport):
        """Schedule a recomputation on the next tick, coalescing with any pending one."""
        with self._lock:
            self._latest = (content, viewport)
            if self._pending_handle is None:
                self._pending_handle = self._scheduler.request(self._on_tick)

    def _on_tick(self, timestamp: float):
        with self._lock:
            self._pending_handle = None
            if self._latest is None:
                return
            content, viewport = self._latest
            self.fit(content, viewport)

    def cancel(self):
        with self._lock:
            self._scheduler.cancel(self._pending_handle)
            self._pending_handle = None
            self._latest = None
