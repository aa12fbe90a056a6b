"""Fast media header probing."""

import logging

import av
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


def probe(path: str) -> dict:
    """Probe video file for metadata. Fast — reads only headers."""
    try:
        container = av.open(path)
    except (av.error.FileNotFoundError, av.error.InvalidDataError) as e:
        logger.exception("Probe failed for %s", path)
        return {"ok": False, "error": f"Failed to open video: {type(e).__name__}"}

    if not container.streams.video:
        container.close()
        return {"ok": False, "error": "No video stream found"}

    stream = container.streams.video[0]
    result = {
        "ok": True,
        "media_type": "video",
        "width": stream.width,
        "height": stream.height,
        "fps": float(stream.average_rate) if stream.average_rate else 0.0,
        "duration_s": float(container.duration / av.time_base)
        if container.duration
        else 0.0,
        "codec": stream.codec_context.name,
        "frame_count": stream.frames or 0,
    }

    container.close()
    return result


def probe_image(path: str) -> dict:
    """Probe still image for metadata without decoding pixel data."""
    try:
        with Image.open(path) as img:
            return {
                "ok": True,
                "media_type": "image",
                "width": img.width,
                "height": img.height,
                "format": img.format,
                "mode": img.mode,
            }
    except (OSError, UnidentifiedImageError) as e:
        logger.exception("Probe failed for %s", path)
        return {"ok": False, "error": f"Failed to open image: {type(e).__name__}"}
