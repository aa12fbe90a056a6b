"""Glyph mapper — turns a sampled RGBA buffer into lines of ramp glyphs.

The buffer is flat and row-major with 4 samples per cell (R, G, B, A), the
same layout a canvas readback produces. Luminance uses fixed 0.21/0.72/0.07
weights; changing them changes every rendered frame.
"""

import numpy as np

LUMA_WEIGHTS = (0.21, 0.72, 0.07)
TRANSPARENT_GLYPH = " "


def _cells(buffer: np.ndarray, grid_width: int, grid_height: int) -> np.ndarray:
    expected = grid_width * grid_height * 4
    flat = np.asarray(buffer).reshape(-1)
    if flat.size < expected:
        raise ValueError(
            f"Pixel buffer has {flat.size} samples, expected {expected} "
            f"for a {grid_width}x{grid_height} grid"
        )
    return flat[:expected].reshape(grid_width * grid_height, 4)


def luminance(cells: np.ndarray) -> np.ndarray:
    """Per-cell luminance for an (N, 4) array, float64 in [0, 255]."""
    rgb = cells[:, :3].astype(np.float64)
    r_w, g_w, b_w = LUMA_WEIGHTS
    return r_w * rgb[:, 0] + g_w * rgb[:, 1] + b_w * rgb[:, 2]


def glyph_indices(cells: np.ndarray, ramp_length: int, invert: bool) -> np.ndarray:
    """Ramp index per cell. Transparent cells are not special-cased here."""
    last = ramp_length - 1
    idx = np.floor(luminance(cells) / 255 * last).astype(np.intp)
    # Float rounding at L == 255 must not step past the last glyph
    np.clip(idx, 0, last, out=idx)
    if invert:
        idx = last - idx
    return idx


def map_pixels(
    buffer: np.ndarray,
    grid_width: int,
    grid_height: int,
    ramp: str,
    invert: bool = False,
) -> str:
    """Map a flat RGBA buffer to text: grid_height lines of grid_width glyphs.

    Every row, including the last, ends with a newline. Fully transparent
    cells render as a space regardless of colour or invert.
    """
    if not ramp:
        raise ValueError("ramp must contain at least one glyph")
    if grid_width <= 0 or grid_height <= 0:
        return ""

    cells = _cells(buffer, grid_width, grid_height)
    glyphs = np.array(list(ramp))
    chars = glyphs[glyph_indices(cells, len(ramp), invert)]
    chars[cells[:, 3] == 0] = TRANSPARENT_GLYPH

    rows = chars.reshape(grid_height, grid_width)
    return "".join("".join(row) + "\n" for row in rows)
