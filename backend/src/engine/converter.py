"""Conversion engine — frame in, text out.

A source that is not ready yet converts to "" (nothing to draw). Any other
failure is confined to the single call: it is reported to Sentry, logged,
and the call returns "" so the next frame tick or settings change can retry.
"""

import logging
import threading
import time
from collections import deque

import sentry_sdk

from engine.sampler import sample
from engine.settings import ConversionSettings, grid_dimensions
from glyphs.mapper import map_pixels
from glyphs.ramps import get_ramp

logger = logging.getLogger(__name__)

# Above this a conversion can no longer keep up with a 20 fps loop
CONVERT_WARN_MS = 50

_timing_lock = threading.Lock()
_timing: deque = deque(maxlen=100)


def _capture_with_context(e: Exception, extra: dict):
    """Capture exception to Sentry with conversion context and fingerprint dedup."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("stage", "convert")
        scope.fingerprint = ["convert-crash", type(e).__name__]
        scope.set_context("conversion", extra)
        sentry_sdk.capture_exception(e, scope=scope)


def record_timing(elapsed_ms: float):
    """Record a timing sample for one conversion."""
    with _timing_lock:
        _timing.append(elapsed_ms)


def get_conversion_stats() -> dict:
    """Return p50/p95/max over the recent conversions."""
    with _timing_lock:
        s = sorted(_timing)
    return {
        "p50": s[len(s) // 2] if s else 0,
        "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
        "max": max(s) if s else 0,
        "samples": len(s),
    }


def flush_timing():
    """Clear all timing stats."""
    with _timing_lock:
        _timing.clear()


def convert(source, settings: ConversionSettings) -> str:
    """Convert the source's current frame to text.

    Returns grid_height lines of exactly settings.grid_width glyphs, each
    newline-terminated, or "" when there is nothing to draw. Any object with
    is_ready, width, height and read_pixels works as a source, so the size is
    checked here as well.
    """
    if source is None or not source.is_ready:
        return ""

    source_width, source_height = source.width, source.height
    if not source_width or not source_height:
        return ""

    grid_width, grid_height = grid_dimensions(
        source_width, source_height, settings.grid_width
    )
    if grid_height == 0:
        return ""

    t0 = time.monotonic()
    try:
        ramp = get_ramp(settings.ramp_key)
        frame = source.read_pixels()
        buffer = sample(frame, grid_width, grid_height)
        text = map_pixels(buffer, grid_width, grid_height, ramp, settings.invert)
    except Exception as e:
        _capture_with_context(
            e,
            {
                "media_type": getattr(source, "kind", "unknown"),
                "source_size": [source_width, source_height],
                "grid": [grid_width, grid_height],
                "ramp": settings.ramp_key,
                "invert": settings.invert,
            },
        )
        logger.error("Conversion failed: %s", type(e).__name__)
        logger.debug("Conversion exception detail: %s", e)
        return ""

    elapsed_ms = (time.monotonic() - t0) * 1000
    record_timing(elapsed_ms)
    if elapsed_ms > CONVERT_WARN_MS:
        logger.warning(
            "Conversion took %.0fms (>%dms warn threshold) for a %dx%d grid",
            elapsed_ms,
            CONVERT_WARN_MS,
            grid_width,
            grid_height,
        )
    return text
