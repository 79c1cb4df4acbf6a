"""
Yeelight Color Codec

Converts RGB colors into the two wire representations used by Yeelight
devices: a 24-bit packed integer (set_rgb / bg_set_rgb) and a 4-character
base-64 text encoding (update_leds in direct mode).
"""

import re
from typing import Iterable, Tuple

RGB = Tuple[int, int, int]

# update_leds alphabet, one symbol per 6 bits
ASCII_TABLE = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789+/"
)

MAX_PACKED = 0xFFFFFF

_HEX_COLOR = re.compile(r'^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$', re.IGNORECASE)


def _clamp(value: int) -> int:
    return max(0, min(255, int(value)))


def pack(r: int, g: int, b: int) -> int:
    """Pack an RGB triple into the device's 24-bit integer (R high byte)."""
    return _clamp(r) * 65536 + _clamp(g) * 256 + _clamp(b)


def unpack(packed: int) -> RGB:
    """Split a packed 24-bit color back into (r, g, b)."""
    return (packed >> 16) & 0xFF, (packed >> 8) & 0xFF, packed & 0xFF


def correct_red(r: int, g: int, b: int) -> RGB:
    """
    Apply the red-correction heuristic.

    Yeelight devices render bright pure red with an orange cast. Forcing a
    green component of 1 fixes the perceived hue.

    Args:
        r, g, b: Color channels 0-255

    Returns:
        Corrected (r, g, b)
    """
    if r > 100 and g == 0 and b == 0:
        g = 1
    return r, g, b


def corrected_packed(rgb: RGB) -> int:
    """Red-correct then pack an RGB triple"""
    return pack(*correct_red(*rgb))


def encode_ascii(packed: int) -> str:
    """
    Encode a packed color as 4 base-64 digits, most significant first.

    Args:
        packed: Packed color 0-16777215

    Returns:
        4-character string over ASCII_TABLE
    """
    if not 0 <= packed <= MAX_PACKED:
        raise ValueError(f"Packed color out of range: {packed}")

    return ''.join(
        ASCII_TABLE[(packed >> shift) & 0x3F] for shift in (18, 12, 6, 0)
    )


def decode_ascii(text: str) -> int:
    """Decode a 4-character update_leds color back to its packed value"""
    if len(text) != 4:
        raise ValueError(f"Encoded color must be 4 characters: {text!r}")

    value = 0
    for char in text:
        digit = ASCII_TABLE.find(char)
        if digit < 0:
            raise ValueError(f"Invalid encoded color character: {char!r}")
        value = value * 64 + digit
    return value


def encode_frame(colors: Iterable[RGB]) -> str:
    """Build a per-LED update_leds payload from RGB triples"""
    return ''.join(encode_ascii(corrected_packed(color)) for color in colors)


def hex_to_rgb(text: str) -> RGB:
    """
    Parse a '#RRGGBB' color string.

    Anything that is not a 6-digit hex color yields black, matching how the
    device plugin has always treated bad color settings.
    """
    match = _HEX_COLOR.match((text or '').strip())
    if not match:
        return 0, 0, 0
    return tuple(int(part, 16) for part in match.groups())
