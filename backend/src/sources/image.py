"""Still image source decoded with Pillow."""

import logging

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from sources.base import SourceFrame

logger = logging.getLogger(__name__)


class ImageSource(SourceFrame):
    kind = "image"

    def __init__(self, path: str | None = None):
        super().__init__()
        self.path = path
        self._pixels: np.ndarray | None = None

    @classmethod
    def from_array(cls, array: np.ndarray) -> "ImageSource":
        """Wrap an already decoded (H, W, 3|4) uint8 array. Ready immediately."""
        src = cls()
        if array.ndim == 3 and array.shape[2] == 3:
            alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
            array = np.concatenate([array, alpha], axis=2)
        src._pixels = np.ascontiguousarray(array, dtype=np.uint8)
        src.ready.fire()
        return src

    @property
    def width(self) -> int:
        return 0 if self._pixels is None else self._pixels.shape[1]

    @property
    def height(self) -> int:
        return 0 if self._pixels is None else self._pixels.shape[0]

    def load(self) -> bool:
        """Decode the file. Fires ``ready`` on success; returns False otherwise."""
        if self.path is None:
            return self._pixels is not None
        try:
            with Image.open(self.path) as img:
                img = ImageOps.exif_transpose(img)
                self._pixels = np.array(img.convert("RGBA"))
        except (OSError, UnidentifiedImageError) as e:
            logger.warning("Image decode failed: %s", type(e).__name__)
            return False
        self.ready.fire()
        return True

    def read_pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise RuntimeError("image not loaded")
        return self._pixels

    def close(self):
        self._pixels = None
