"""Per-pixel escape-time and soft-escape iteration."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping, NamedTuple, Optional

from .colors import RGB, blend, spin_color
from .complex_ops import OPS, ZERO, Complex, ComplexOps

ESCAPE_RADIUS = 16.0
ESCAPE_RADIUS_SQUARED = ESCAPE_RADIUS * ESCAPE_RADIUS

Equation = Callable[[Complex, Complex, Complex, ComplexOps], Complex]


class OrbitStats(NamedTuple):
    """Statistics accumulated over one pixel's orbit."""

    length: float
    magnitude_sum: float
    angle_sum: float
    max_magnitude: float
    last: Complex


class EscapeSample(NamedTuple):
    """Escape summary handed to exterior mappers."""

    iter: int
    max_iterations: int
    shade: float
    escape_weight: float


class PixelState(enum.Enum):
    ESCAPED = "escaped"
    INTERIOR = "interior"
    DIVERGED = "diverged"


@dataclass(frozen=True)
class PixelResult:
    state: PixelState
    iter: int
    orbit: OrbitStats
    survival: float
    soft: bool = False

    @property
    def is_interior(self) -> bool:
        return self.state is not PixelState.ESCAPED

    def sample(self, max_iterations: int) -> EscapeSample:
        return EscapeSample(
            iter=self.iter,
            max_iterations=max_iterations,
            shade=self.iter / max_iterations,
            escape_weight=1.0 - self.survival,
        )


class PlaneMapping(NamedTuple):
    """Maps pixel positions to the complex plane."""

    width: int
    height: int
    center: Complex
    unit: float
    cos_rotation: float
    sin_rotation: float

    @classmethod
    def create(cls, width: int, height: int, center: Complex, scale: float, rotation: float) -> "PlaneMapping":
        return cls(
            width=width,
            height=height,
            center=center,
            unit=scale / width,
            cos_rotation=math.cos(rotation),
            sin_rotation=math.sin(rotation),
        )

    def point(self, x: float, y: float) -> Complex:
        dx = (x - self.width / 2) * self.unit
        dy = (y - self.height / 2) * self.unit
        rotated_re = dx * self.cos_rotation - dy * self.sin_rotation
        rotated_im = dx * self.sin_rotation + dy * self.cos_rotation
        return Complex(self.center.re + rotated_re, self.center.im + rotated_im)


def seed_variables(plane_variable: str, plane_value: Complex, manual_values: Mapping[str, Complex]) -> tuple[Complex, Complex, Complex]:
    """Return ``(z, c, exponent)`` with the plane-driven slot substituted."""

    z = plane_value if plane_variable == "z" else manual_values["z"]
    c = plane_value if plane_variable == "c" else manual_values["c"]
    exponent = plane_value if plane_variable == "exponent" else manual_values["exponent"]
    return z, c, exponent


def _is_finite(z: Complex) -> bool:
    return math.isfinite(z.re) and math.isfinite(z.im)


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def iterate_escape(
    equation: Equation,
    z: Complex,
    c: Complex,
    exponent: Complex,
    max_iterations: int,
    ops: ComplexOps = OPS,
) -> PixelResult:
    """Iterate until the orbit leaves the escape radius or the budget runs out."""

    length = 0
    magnitude_sum = 0.0
    angle_sum = 0.0
    max_magnitude = 0.0
    state = PixelState.INTERIOR
    iteration = max_iterations

    for i in range(max_iterations):
        z = equation(z, c, exponent, ops)
        magnitude = math.hypot(z.re, z.im)
        length += 1
        magnitude_sum += magnitude
        angle_sum += math.atan2(z.im, z.re)
        max_magnitude = max(max_magnitude, magnitude)
        if not _is_finite(z):
            state = PixelState.DIVERGED
            break
        if z.re * z.re + z.im * z.im > ESCAPE_RADIUS_SQUARED:
            state = PixelState.ESCAPED
            iteration = i
            break

    orbit = OrbitStats(length, magnitude_sum, angle_sum, max_magnitude, z)
    survival = 0.0 if state is PixelState.ESCAPED else 1.0
    return PixelResult(state=state, iter=iteration, orbit=orbit, survival=survival)


def iterate_soft(
    equation: Equation,
    z: Complex,
    c: Complex,
    exponent: Complex,
    max_iterations: int,
    sharpness: float,
    ops: ComplexOps = OPS,
) -> PixelResult:
    """Run the full iteration budget, decaying a survival weight past the escape radius.

    Orbit statistics are weighted by the survival value at each step, so
    samples taken after the orbit has left the radius count for less.
    """

    survival = 1.0
    first_overflow: Optional[int] = None
    length = 0.0
    magnitude_sum = 0.0
    angle_sum = 0.0
    max_magnitude = 0.0

    for i in range(max_iterations):
        z = equation(z, c, exponent, ops)
        if not _is_finite(z):
            z = ZERO
        overflow = z.re * z.re + z.im * z.im - ESCAPE_RADIUS_SQUARED
        if overflow > 0:
            survival *= sigmoid(-sharpness * overflow)
            if first_overflow is None:
                first_overflow = i
        if survival > 0.0:
            magnitude = math.hypot(z.re, z.im)
            length += survival
            magnitude_sum += survival * magnitude
            angle_sum += survival * math.atan2(z.im, z.re)
            max_magnitude = max(max_magnitude, survival * magnitude)

    orbit = OrbitStats(length, magnitude_sum, angle_sum, max_magnitude, z)
    if first_overflow is None:
        return PixelResult(PixelState.INTERIOR, max_iterations, orbit, survival, soft=True)
    return PixelResult(PixelState.ESCAPED, first_overflow, orbit, survival, soft=True)


def shade_pixel(
    result: PixelResult,
    max_iterations: int,
    interior: Optional[Callable[..., RGB]],
    exterior: Optional[Callable[..., RGB]],
    helpers: Any,
    spin_interior: bool = False,
    spin_exterior: bool = False,
    ops: ComplexOps = OPS,
) -> RGB:
    """Turn an iteration result into a color.

    ``interior`` is called as ``interior(orbit, ops, helpers)`` and
    ``exterior`` as ``exterior(sample, orbit, ops, helpers)``. Without an
    exterior mapper the helpers' palette is indexed by the shade.
    """

    orbit = result.orbit

    def interior_color() -> RGB:
        if spin_interior or interior is None:
            return spin_color(orbit)
        return interior(orbit, ops, helpers)

    def exterior_color() -> RGB:
        if spin_exterior:
            return spin_color(orbit)
        sample = result.sample(max_iterations)
        if exterior is None:
            return helpers.palette(sample.shade)
        return exterior(sample, orbit, ops, helpers)

    if result.soft:
        weight = 1.0 - result.survival
        if weight <= 0.0:
            return interior_color()
        if weight >= 1.0:
            return exterior_color()
        return blend(interior_color(), exterior_color(), weight)

    if result.is_interior:
        return interior_color()
    return exterior_color()
