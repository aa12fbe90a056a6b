"""Frame sampler — area-resample a frame down to one RGBA sample per grid cell."""

import cv2
import numpy as np


def _as_rgba(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 2:
        frame = frame[:, :, np.newaxis]
    channels = frame.shape[2]
    if channels == 4:
        return frame
    if channels == 1:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2RGBA)
    if channels == 3:
        return cv2.cvtColor(frame, cv2.COLOR_RGB2RGBA)
    raise ValueError(f"Unsupported channel count: {channels}")


def sample(frame: np.ndarray, grid_width: int, grid_height: int) -> np.ndarray:
    """Resize frame to grid_width x grid_height cells with box filtering.

    Returns a flat row-major uint8 buffer of grid_width * grid_height * 4
    samples. A zero-sized grid returns an empty buffer.
    """
    if grid_width <= 0 or grid_height <= 0:
        return np.empty(0, dtype=np.uint8)

    rgba = _as_rgba(np.ascontiguousarray(frame))
    if rgba.dtype != np.uint8:
        rgba = np.clip(rgba, 0, 255).astype(np.uint8)

    small = cv2.resize(rgba, (grid_width, grid_height), interpolation=cv2.INTER_AREA)
    return small.reshape(-1)
