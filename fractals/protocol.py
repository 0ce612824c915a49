"""Render requests, payloads and the tagged responses streamed back to a view."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field, fields
from numbers import Real
from types import MappingProxyType
from typing import Any, Mapping, Union

import numpy as np

from .complex_ops import Complex
from .formulas import DEFAULT_EQUATION_SOURCE, DEFAULT_EXTERIOR_SOURCE, DEFAULT_INTERIOR_SOURCE

MIN_ITERATIONS = 1
MAX_ITERATIONS = 1000
MIN_SOFT_SHARPNESS = 0.05
MAX_SOFT_SHARPNESS = 0.6


class VariableKey(str, enum.Enum):
    Z = "z"
    C = "c"
    EXPONENT = "exponent"


class ColorScheme(str, enum.Enum):
    CLASSIC = "classic"
    FIRE = "fire"
    ICE = "ice"


class RenderMode(str, enum.Enum):
    ESCAPE = "escape"
    SOFT = "soft"


INITIAL_MANUAL_VALUES: Mapping[str, Complex] = MappingProxyType(
    {
        "z": Complex(0.0, 0.0),
        "c": Complex(-0.5, 0.0),
        "exponent": Complex(2.0, 0.0),
    }
)


def to_complex(value: Any) -> Complex:
    """Accept a Complex, ``{re, im}`` mapping, ``(re, im)`` pair or builtin complex."""

    if isinstance(value, Complex):
        re, im = value
    elif isinstance(value, Mapping):
        re, im = value["re"], value["im"]
    elif isinstance(value, complex):
        re, im = value.real, value.imag
    elif isinstance(value, Real):
        re, im = value, 0.0
    else:
        re, im = value
    re = float(re)
    im = float(im)
    if not (math.isfinite(re) and math.isfinite(im)):
        raise ValueError(f"complex value must be finite, got ({re}, {im})")
    return Complex(re, im)


def _check_range(name: str, value: float, low: float, high: float) -> None:
    if not (low <= value <= high):
        raise ValueError(f"{name} must be in [{low}, {high}], got {value}")


@dataclass(frozen=True)
class RenderPayload:
    """Everything needed to render one frame. Immutable once built."""

    width: int
    height: int
    center: Complex = Complex(-0.5, 0.0)
    scale: float = 3.0
    max_iterations: int = 120
    plane_variable: VariableKey = VariableKey.C
    manual_values: Mapping[str, Complex] = field(default_factory=lambda: INITIAL_MANUAL_VALUES)
    color_scheme: ColorScheme = ColorScheme.CLASSIC
    render_mode: RenderMode = RenderMode.ESCAPE
    soft_sharpness: float = 0.2
    equation_source: str = DEFAULT_EQUATION_SOURCE
    interior_source: str = DEFAULT_INTERIOR_SOURCE
    exterior_source: str = DEFAULT_EXTERIOR_SOURCE
    rotation: float = 0.0
    low_pass: float = 0.0
    spin_interior_coloring: bool = False
    spin_exterior_coloring: bool = False

    def __post_init__(self) -> None:
        set_ = object.__setattr__
        set_(self, "width", int(self.width))
        set_(self, "height", int(self.height))
        set_(self, "center", to_complex(self.center))
        set_(self, "scale", float(self.scale))
        set_(self, "max_iterations", int(self.max_iterations))
        set_(self, "plane_variable", VariableKey(self.plane_variable))
        set_(self, "color_scheme", ColorScheme(self.color_scheme))
        set_(self, "render_mode", RenderMode(self.render_mode))
        set_(self, "soft_sharpness", float(self.soft_sharpness))
        set_(self, "rotation", float(self.rotation))
        set_(self, "low_pass", float(self.low_pass))
        set_(self, "spin_interior_coloring", bool(self.spin_interior_coloring))
        set_(self, "spin_exterior_coloring", bool(self.spin_exterior_coloring))

        given = {VariableKey(key).value: value for key, value in self.manual_values.items()}
        manual = {}
        for key in VariableKey:
            if key.value not in given:
                raise ValueError(f"manual_values is missing '{key.value}'")
            manual[key.value] = to_complex(given[key.value])
        set_(self, "manual_values", MappingProxyType(manual))

        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"width and height must be positive, got {self.width}x{self.height}")
        if not (math.isfinite(self.scale) and self.scale > 0):
            raise ValueError(f"scale must be a positive finite number, got {self.scale}")
        if not math.isfinite(self.rotation):
            raise ValueError("rotation must be finite")
        _check_range("max_iterations", self.max_iterations, MIN_ITERATIONS, MAX_ITERATIONS)
        _check_range("soft_sharpness", self.soft_sharpness, MIN_SOFT_SHARPNESS, MAX_SOFT_SHARPNESS)
        _check_range("low_pass", self.low_pass, 0.0, 1.0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RenderPayload":
        """Build a payload from its wire form (camelCase or snake_case keys)."""

        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _WIRE_KEYS.get(key, key)
            if name not in known:
                raise ValueError(f"unknown payload field '{key}'")
            kwargs[name] = value
        if "manual_values" in kwargs:
            kwargs["manual_values"] = {**INITIAL_MANUAL_VALUES, **kwargs["manual_values"]}
        return cls(**kwargs)


_WIRE_KEYS = {
    "maxIterations": "max_iterations",
    "planeVariable": "plane_variable",
    "manualValues": "manual_values",
    "colorScheme": "color_scheme",
    "renderMode": "render_mode",
    "softSharpness": "soft_sharpness",
    "equationSource": "equation_source",
    "interiorSource": "interior_source",
    "exteriorSource": "exterior_source",
    "lowPass": "low_pass",
    "spinInteriorColoring": "spin_interior_coloring",
    "spinExteriorColoring": "spin_exterior_coloring",
}


@dataclass(frozen=True)
class RenderRequest:
    id: int
    payload: RenderPayload


@dataclass(frozen=True, eq=False)
class Chunk:
    """A horizontal band of RGBA8 pixels, shape ``(rows, width, 4)``."""

    id: int
    start_y: int
    rows: int
    width: int
    pixels: np.ndarray


@dataclass(frozen=True, eq=False)
class Bitmap:
    """A complete RGBA8 frame, shape ``(height, width, 4)``."""

    id: int
    pixels: np.ndarray
    elapsed_ms: float
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class Done:
    id: int
    elapsed_ms: float
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class RenderError:
    id: int
    message: str


RenderResponse = Union[Chunk, Bitmap, Done, RenderError]


def is_terminal(response: RenderResponse) -> bool:
    return isinstance(response, (Bitmap, Done, RenderError))
