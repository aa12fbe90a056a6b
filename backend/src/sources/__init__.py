"""Source frames the converter reads from: still images and looping videos."""

from security import classify_media
from sources.base import ReadySignal, SourceFrame, UnsupportedMediaError
from sources.image import ImageSource
from sources.video import VideoSource

__all__ = [
    "ImageSource",
    "ReadySignal",
    "SourceFrame",
    "UnsupportedMediaError",
    "VideoSource",
    "open_source",
]


def open_source(path: str) -> SourceFrame:
    """Build an unloaded source for path. Raises UnsupportedMediaError."""
    kind = classify_media(path)
    if kind == "image":
        return ImageSource(path)
    if kind == "video":
        return VideoSource(path)
    raise UnsupportedMediaError(
        "Unsupported file type. Please upload an image or video."
    )
