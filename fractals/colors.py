"""Palettes and HSL based coloring for escape-time renders."""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache
from numbers import Real
from typing import Any, Callable, NamedTuple

BLACK_CHANNEL = 0


class RGB(NamedTuple):
    r: int
    g: int
    b: int


BLACK = RGB(0, 0, 0)


def _channel(value: float) -> int:
    if not math.isfinite(value):
        return BLACK_CHANNEL
    clamped = min(max(value, 0.0), 255.0)
    return int(math.floor(clamped + 0.5))


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(value, high))


def hsl_to_rgb(h: float, s: float, l: float) -> RGB:
    """Convert hue (degrees), saturation and lightness to 8-bit RGB."""

    hue = h % 360.0 if math.isfinite(h) else 0.0
    c = (1.0 - abs(2.0 * l - 1.0)) * s
    hp = hue / 60.0
    x = c * (1.0 - abs(hp % 2.0 - 1.0))

    if 0.0 <= hp < 1.0:
        r1, g1, b1 = c, x, 0.0
    elif 1.0 <= hp < 2.0:
        r1, g1, b1 = x, c, 0.0
    elif 2.0 <= hp < 3.0:
        r1, g1, b1 = 0.0, c, x
    elif 3.0 <= hp < 4.0:
        r1, g1, b1 = 0.0, x, c
    elif 4.0 <= hp < 5.0:
        r1, g1, b1 = x, 0.0, c
    elif 5.0 <= hp < 6.0:
        r1, g1, b1 = c, 0.0, x
    else:
        r1, g1, b1 = 0.0, 0.0, 0.0

    m = l - c / 2.0
    return RGB(_channel((r1 + m) * 255.0), _channel((g1 + m) * 255.0), _channel((b1 + m) * 255.0))


def classic(t: float) -> RGB:
    return hsl_to_rgb(200.0 + 120.0 * t, 0.65, 0.5)


def fire(t: float) -> RGB:
    return hsl_to_rgb(30.0 + 40.0 * t, 0.9, 0.5 + 0.2 * (1.0 - t))


def ice(t: float) -> RGB:
    return hsl_to_rgb(180.0 + 80.0 * t, 0.6, 0.45 + 0.15 * t)


PALETTES: dict[str, Callable[[float], RGB]] = {
    "classic": classic,
    "fire": fire,
    "ice": ice,
}


def colorize(scheme: str, t: float) -> RGB:
    """Map a normalized escape fraction to a color; unknown schemes use classic."""

    return PALETTES.get(scheme, classic)(t)


def spin_color(orbit: Any) -> RGB:
    """Color an orbit by its mean angle and magnitude statistics."""

    length = max(orbit.length, 1)
    avg_magnitude = orbit.magnitude_sum / length
    mean_angle = orbit.angle_sum / length
    hue = 210.0 + 90.0 * math.sin(mean_angle)
    saturation = 0.5 + 0.3 * min(1.0, orbit.max_magnitude / 4.0)
    lightness = 0.25 + 0.5 * min(1.0, avg_magnitude / 3.0)
    return hsl_to_rgb(hue, saturation, lightness)


def blend(a: RGB, b: RGB, weight: float) -> RGB:
    """Linear mix of two colors; ``weight`` 0 gives ``a``, 1 gives ``b``."""

    w = clamp(weight)
    return RGB(
        _channel(a.r * (1.0 - w) + b.r * w),
        _channel(a.g * (1.0 - w) + b.g * w),
        _channel(a.b * (1.0 - w) + b.b * w),
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def is_rgb_like(value: Any) -> bool:
    if isinstance(value, dict):
        return all(_is_number(value.get(key)) for key in ("r", "g", "b"))
    return all(_is_number(getattr(value, key, None)) for key in ("r", "g", "b"))


def sanitize_rgb(value: Any) -> RGB:
    """Clamp and round a mapper result; anything malformed becomes black."""

    if not is_rgb_like(value):
        return BLACK
    if isinstance(value, dict):
        r, g, b = value["r"], value["g"], value["b"]
    else:
        r, g, b = value.r, value.g, value.b
    return RGB(_channel(float(r)), _channel(float(g)), _channel(float(b)))


@dataclass(frozen=True)
class Helpers:
    """Utilities exposed to interior and exterior mappers."""

    hsl_to_rgb: Callable[[float, float, float], RGB]
    palette: Callable[[float], RGB]
    colorize: Callable[[str, float], RGB]
    spin_color: Callable[[Any], RGB]
    blend: Callable[[RGB, RGB, float], RGB]
    clamp: Callable[..., float]
    sin: Callable[[float], float]
    cos: Callable[[float], float]
    tan: Callable[[float], float]
    atan2: Callable[[float, float], float]
    sqrt: Callable[[float], float]
    exp: Callable[[float], float]
    log: Callable[[float], float]
    hypot: Callable[..., float]
    floor: Callable[[float], int]
    pi: float = math.pi
    tau: float = math.tau


@lru_cache(maxsize=None)
def make_helpers(scheme: str = "classic") -> Helpers:
    return Helpers(
        hsl_to_rgb=hsl_to_rgb,
        palette=PALETTES.get(scheme, classic),
        colorize=colorize,
        spin_color=spin_color,
        blend=blend,
        clamp=clamp,
        sin=math.sin,
        cos=math.cos,
        tan=math.tan,
        atan2=math.atan2,
        sqrt=math.sqrt,
        exp=math.exp,
        log=math.log,
        hypot=math.hypot,
        floor=math.floor,
    )
