"""Brightness ramp registry — ordered glyph sequences used to quantize luminance."""

COARSE = "coarse"
FINE = "fine"

_RAMPS: dict[str, str] = {
    COARSE: " @%#*+=-:. ",
    FINE: "$@B%8&WM#*oahkbdpqwmZO0QLCJUYXzcvunxrjft/\\|()1{}[]?-_+~<>i!lI;:,\"^`' . ",
}

DEFAULT_RAMP = COARSE


def register_ramp(key: str, glyphs: str):
    """Register a ramp. Glyphs are ordered sparse → dense."""
    if not glyphs:
        raise ValueError(f"ramp {key!r} must contain at least one glyph")
    _RAMPS[key] = glyphs


def get_ramp(key: str) -> str:
    """Get ramp glyphs by key. Raises KeyError for unknown keys."""
    try:
        return _RAMPS[key]
    except KeyError:
        raise KeyError(f"unknown ramp: {key}") from None


def has_ramp(key: str) -> bool:
    return key in _RAMPS


def list_ramps() -> list[dict]:
    """List all registered ramps with metadata."""
    return [
        {"key": key, "length": len(glyphs), "glyphs": glyphs}
        for key, glyphs in _RAMPS.items()
    ]


def toggle_ramp_key(key: str) -> str:
    """Swap between the two built-in ramps. Custom ramps toggle back to coarse."""
    return FINE if key == COARSE else COARSE
