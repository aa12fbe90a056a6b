"""Conversion settings — immutable per-call record plus the live shared store."""

import dataclasses
import math
import threading
from dataclasses import dataclass

from glyphs.ramps import DEFAULT_RAMP, has_ramp, toggle_ramp_key

# Glyphs are taller than wide; rows are squashed to keep the source aspect
FONT_ASPECT_RATIO = 0.55

DEFAULT_GRID_WIDTH = 100
MIN_GRID_WIDTH = 20
MAX_GRID_WIDTH = 300


@dataclass(frozen=True)
class ConversionSettings:
    grid_width: int = DEFAULT_GRID_WIDTH
    ramp_key: str = DEFAULT_RAMP
    invert: bool = False

    def __post_init__(self):
        if isinstance(self.grid_width, bool) or not isinstance(self.grid_width, int):
            raise ValueError(f"grid_width must be an int, got {self.grid_width!r}")
        if self.grid_width < 1:
            raise ValueError(f"grid_width must be positive, got {self.grid_width}")
        if not has_ramp(self.ramp_key):
            raise ValueError(f"unknown ramp: {self.ramp_key}")

    def replace(self, **changes) -> "ConversionSettings":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "grid_width": self.grid_width,
            "ramp": self.ramp_key,
            "invert": self.invert,
        }


def grid_dimensions(
    source_width: int, source_height: int, grid_width: int
) -> tuple[int, int]:
    """Character grid for a source of the given intrinsic size.

    Height is floor(width * aspect * FONT_ASPECT_RATIO); a zero-sized source
    yields a zero-height grid.
    """
    if not source_width or not source_height:
        return grid_width, 0
    aspect = source_height / source_width
    return grid_width, max(0, math.floor(grid_width * aspect * FONT_ASPECT_RATIO))


class SettingsStore:
    """Single authoritative settings record shared by the session and the loop.

    Readers take a snapshot per conversion; writers swap the whole record,
    so a reader never sees a half-applied change.
    """

    def __init__(self, initial: ConversionSettings | None = None):
        self._lock = threading.Lock()
        self._current = initial or ConversionSettings()

    def snapshot(self) -> ConversionSettings:
        with self._lock:
            return self._current

    def update(self, **changes) -> ConversionSettings:
        """Apply changes atomically. Raises ValueError on invalid values."""
        with self._lock:
            self._current = self._current.replace(**changes)
            return self._current

    def toggle_invert(self) -> ConversionSettings:
        with self._lock:
            self._current = self._current.replace(invert=not self._current.invert)
            return self._current

    def toggle_ramp(self) -> ConversionSettings:
        with self._lock:
            self._current = self._current.replace(
                ramp_key=toggle_ramp_key(self._current.ramp_key)
            )
            return self._current
