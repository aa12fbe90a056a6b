"""Tests for engine.converter — grid shape, readiness, repeatability, failure isolation."""

import math
from unittest.mock import patch

import numpy as np
import pytest

from engine.converter import (
    convert,
    flush_timing,
    get_conversion_stats,
)
from engine.settings import ConversionSettings
from sources.base import SourceFrame
from sources.image import ImageSource

pytestmark = pytest.mark.smoke


def _frame(h=120, w=160, seed=42):
    rng = np.random.default_rng(seed)
    frame = rng.integers(0, 256, (h, w, 4), dtype=np.uint8)
    frame[:, :, 3] = 255
    return frame


class _UnreadySource(SourceFrame):
    kind = "video"

    @property
    def width(self):
        return 320

    @property
    def height(self):
        return 240

    def read_pixels(self):
        raise AssertionError("must not read an unready source")


class _BrokenSource(ImageSource):
    def read_pixels(self):
        raise RuntimeError("surface lost")


@pytest.mark.parametrize(
    "h,w,grid_w", [(120, 160, 100), (480, 640, 20), (1080, 1920, 300), (400, 100, 50)]
)
def test_output_shape(h, w, grid_w):
    src = ImageSource.from_array(_frame(h, w))
    text = convert(src, ConversionSettings(grid_width=grid_w))
    expected_h = math.floor(grid_w * h / w * 0.55)
    lines = text.split("\n")
    assert lines[-1] == ""
    assert len(lines) - 1 == expected_h
    assert all(len(line) == grid_w for line in lines[:-1])


def test_glyphs_come_from_active_ramp():
    src = ImageSource.from_array(_frame())
    for ramp_key in ("coarse", "fine"):
        from glyphs.ramps import get_ramp

        text = convert(src, ConversionSettings(grid_width=60, ramp_key=ramp_key))
        assert set(text) - {"\n"} <= set(get_ramp(ramp_key))


def test_idempotent():
    src = ImageSource.from_array(_frame())
    settings = ConversionSettings(grid_width=80, ramp_key="fine", invert=True)
    assert convert(src, settings) == convert(src, settings)


def test_transparent_source_is_all_spaces():
    frame = np.zeros((100, 100, 4), dtype=np.uint8)
    frame[:, :, :3] = 255
    src = ImageSource.from_array(frame)
    for invert in (False, True):
        text = convert(src, ConversionSettings(grid_width=30, invert=invert))
        assert set(text) == {" ", "\n"}


def test_unready_source_returns_empty():
    assert convert(_UnreadySource(), ConversionSettings()) == ""


def test_none_source_returns_empty():
    assert convert(None, ConversionSettings()) == ""


def test_zero_width_source_returns_empty():
    src = ImageSource.from_array(np.zeros((10, 0, 4), dtype=np.uint8))
    assert convert(src, ConversionSettings()) == ""


def test_closed_source_returns_empty():
    src = ImageSource.from_array(_frame())
    src.close()
    assert convert(src, ConversionSettings()) == ""


def test_zero_height_grid_returns_empty():
    """A very wide strip rounds to zero rows."""
    src = ImageSource.from_array(_frame(h=1, w=1000))
    assert convert(src, ConversionSettings(grid_width=20)) == ""


def test_failure_is_confined_to_the_call():
    src = _BrokenSource.from_array(_frame())
    with patch("engine.converter.sentry_sdk.capture_exception") as capture:
        assert convert(src, ConversionSettings()) == ""
    capture.assert_called_once()


def test_failure_is_logged(caplog):
    src = _BrokenSource.from_array(_frame())
    with caplog.at_level("ERROR", logger="engine.converter"):
        convert(src, ConversionSettings())
    assert any("RuntimeError" in r.getMessage() for r in caplog.records)


def test_recovers_after_failure():
    frame = _frame()
    src = ImageSource.from_array(frame)
    with patch("engine.converter.sample", side_effect=ValueError("boom")):
        assert convert(src, ConversionSettings()) == ""
    assert convert(src, ConversionSettings()) != ""


def test_timing_recorded():
    flush_timing()
    src = ImageSource.from_array(_frame())
    for _ in range(3):
        convert(src, ConversionSettings(grid_width=40))
    stats = get_conversion_stats()
    assert stats["samples"] == 3
    assert stats["p95"] is None
    assert stats["max"] >= stats["p50"] >= 0
    flush_timing()
    assert get_conversion_stats()["samples"] == 0


def test_slow_conversion_warns(caplog):
    src = ImageSource.from_array(_frame())
    with patch("engine.converter.CONVERT_WARN_MS", -1):
        with caplog.at_level("WARNING", logger="engine.converter"):
            convert(src, ConversionSettings(grid_width=40))
    assert any("warn threshold" in r.getMessage() for r in caplog.records)


def test_gradient_maps_left_to_right():
    """Brightness rising left→right gives non-decreasing ramp positions per row."""
    from glyphs.ramps import get_ramp

    ramp = "0123456789"
    grey = np.linspace(0, 255, 300).astype(np.uint8)
    frame = np.zeros((200, 300, 4), dtype=np.uint8)
    frame[:, :, 0] = grey
    frame[:, :, 1] = grey
    frame[:, :, 2] = grey
    frame[:, :, 3] = 255
    src = ImageSource.from_array(frame)
    with patch.dict("glyphs.ramps._RAMPS", {"digits": ramp}):
        text = convert(src, ConversionSettings(grid_width=50, ramp_key="digits"))
        assert get_ramp("digits") == ramp
    for line in text.splitlines():
        positions = [ramp.index(c) for c in line]
        assert positions == sorted(positions)
        assert positions[0] == 0


def test_duck_typed_source_without_size_returns_empty():
    class _Surface:
        is_ready = True
        width = 0
        height = 240

        def read_pixels(self):
            raise AssertionError("must not read an empty surface")

    assert convert(_Surface(), ConversionSettings()) == ""
