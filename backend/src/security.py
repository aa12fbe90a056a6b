"""Security validation gates for glyphcast."""

import json
import os
import re
from pathlib import Path

from engine.settings import MAX_GRID_WIDTH, MIN_GRID_WIDTH
from glyphs.ramps import has_ramp

# SEC-5: Upload validation
MAX_UPLOAD_SIZE = 500 * 1024 * 1024  # 500 MB
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tif", ".tiff"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v"}
ALLOWED_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS

# SEC-8: Viewport sanity cap (device-independent pixels)
MAX_VIEWPORT_DIM = 32_768


def classify_media(path: str) -> str | None:
    """Return "image" or "video" for a supported file, None otherwise."""
    ext = Path(path).suffix.lower()
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in VIDEO_EXTENSIONS:
        return "video"
    return None


def validate_upload(path: str) -> list[str]:
    """Validate a media file path. Returns list of errors (empty = valid).

    Checks (SEC-5):
    - File exists
    - Not a symlink
    - Extension in whitelist (image or video)
    - File size <= 500 MB
    - Filename is safe (no path traversal)
    """
    errors: list[str] = []
    p = Path(path)

    # Path traversal check: resolved path must be under user home
    resolved = str(p.resolve())
    if not resolved.startswith(str(Path.home())):
        errors.append("Path must be within user home directory")
        return errors

    if not p.exists():
        errors.append(f"File not found: {path}")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
        return errors

    ext = p.suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        errors.append(
            f"Extension '{ext}' not allowed. Allowed: {sorted(ALLOWED_EXTENSIONS)}"
        )

    size = p.stat().st_size
    if size > MAX_UPLOAD_SIZE:
        size_mb = size / (1024 * 1024)
        errors.append(
            f"File too large: {size_mb:.1f} MB (max {MAX_UPLOAD_SIZE // (1024 * 1024)} MB)"
        )

    name = p.name
    if ".." in name or "/" in name or "\\" in name or "\x00" in name:
        errors.append(f"Unsafe filename: {name}")

    return errors


def validate_settings(changes: dict) -> list[str]:
    """Validate a settings change request from the UI. Returns list of errors."""
    errors: list[str] = []
    if "grid_width" in changes:
        width = changes["grid_width"]
        if isinstance(width, bool) or not isinstance(width, int):
            errors.append("grid_width must be an integer")
        elif not MIN_GRID_WIDTH <= width <= MAX_GRID_WIDTH:
            errors.append(
                f"grid_width {width} outside [{MIN_GRID_WIDTH}, {MAX_GRID_WIDTH}]"
            )
    if "ramp_key" in changes and not has_ramp(str(changes["ramp_key"])):
        errors.append(f"unknown ramp: {changes['ramp_key']}")
    if "invert" in changes and not isinstance(changes["invert"], bool):
        errors.append("invert must be a boolean")
    return errors


def validate_viewport(width, height) -> list[str]:
    """Validate viewport dimensions (SEC-8). Zero is allowed (collapsed layout)."""
    errors: list[str] = []
    for name, value in (("width", width), ("height", height)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"viewport {name} must be a number")
        elif not 0 <= value <= MAX_VIEWPORT_DIM:
            errors.append(f"viewport {name} {value} outside [0, {MAX_VIEWPORT_DIM}]")
    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths and auth tokens.

    Also usable for crash dump sanitization.
    """
    event_str = json.dumps(event)
    event_str = event_str.replace(_HOME, "<HOME>")
    if _USERNAME:
        event_str = event_str.replace(_USERNAME, "<USER>")
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event = json.loads(event_str)

    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
