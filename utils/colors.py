# utils/colors.py
import random
import re
from typing import Optional, Sequence

CATEGORY_COLORS = [
    "#22c55e",
    "#3b82f6",
    "#a855f7",
    "#f59e0b",
    "#ef4444",
    "#06b6d4",
    "#ec4899",
    "#84cc16",
    "#f97316",
    "#6366f1",
]

_HEX_COLOR = re.compile(r"^#?([0-9A-Fa-f]{6})$")


def _channel(value: int) -> float:
    srgb = value / 255.0
    if srgb <= 0.03928:
        return srgb / 12.92
    return ((srgb + 0.055) / 1.055) ** 2.4


def relative_luminance(hex_color: str) -> Optional[float]:
    match = _HEX_COLOR.match(hex_color.strip())
    if not match:
        return None
    digits = match.group(1)
    r, g, b = (int(digits[i:i + 2], 16) for i in (0, 2, 4))
    return 0.2126 * _channel(r) + 0.7152 * _channel(g) + 0.0722 * _channel(b)


def contrast_color(hex_color: str) -> str:
    """Black or white, whichever reads better on *hex_color*.

    Invalid input gets black.
    """
    luminance = relative_luminance(hex_color)
    if luminance is None:
        return "#000000"
    return "#000000" if luminance > 0.179 else "#ffffff"


def pick_category_color(used: Sequence[str] = (), rng: Optional[random.Random] = None) -> str:
    """A palette colour, preferring ones no category uses yet."""
    rng = rng or random
    taken = {c.lower() for c in used}
    free = [c for c in CATEGORY_COLORS if c not in taken]
    return rng.choice(free or CATEGORY_COLORS)
