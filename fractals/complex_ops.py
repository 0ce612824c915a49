"""Complex arithmetic over ``(re, im)`` pairs.

Formulas typed by users receive these functions through the read-only
``ops`` namespace, and the accelerated backend mirrors them operation for
operation, so the order of floating point operations below is part of the
contract.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, NamedTuple, Union

DIVISION_FLOOR = 1e-12
LOG_FLOOR = 1e-12
INTEGER_POWER_LIMIT = 32
IMAGINARY_EPSILON = 1e-9


class Complex(NamedTuple):
    re: float
    im: float


ZERO = Complex(0.0, 0.0)
ONE = Complex(1.0, 0.0)

Exponent = Union[Complex, float, int]


def _saturating(fn: Callable[[float], float], value: float) -> float:
    # math raises on overflow where IEEE arithmetic would give infinity.
    try:
        return fn(value)
    except OverflowError:
        return math.inf


def _real_power(base: float, exponent: float) -> float:
    try:
        return math.pow(base, exponent)
    except OverflowError:
        return math.inf


def is_complex_like(value: Any) -> bool:
    """Return True when ``value`` carries numeric ``re`` and ``im`` parts."""

    if isinstance(value, Complex):
        return _is_number(value.re) and _is_number(value.im)
    if isinstance(value, dict):
        return _is_number(value.get("re")) and _is_number(value.get("im"))
    return _is_number(getattr(value, "re", None)) and _is_number(getattr(value, "im", None))


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def sanitize_complex(value: Any) -> Complex:
    """Coerce ``value`` to a finite Complex, replacing anything else with zero."""

    if not is_complex_like(value):
        return ZERO
    if isinstance(value, dict):
        re, im = value["re"], value["im"]
    else:
        re, im = value.re, value.im
    re = float(re)
    im = float(im)
    if not (math.isfinite(re) and math.isfinite(im)):
        return ZERO
    return Complex(re, im)


def complex_(re: float, im: float) -> Complex:
    return Complex(float(re), float(im))


def add(a: Complex, b: Complex) -> Complex:
    return Complex(a.re + b.re, a.im + b.im)


def sub(a: Complex, b: Complex) -> Complex:
    return Complex(a.re - b.re, a.im - b.im)


def mul(a: Complex, b: Complex) -> Complex:
    return Complex(a.re * b.re - a.im * b.im, a.re * b.im + a.im * b.re)


def div(a: Complex, b: Complex) -> Complex:
    denom = b.re * b.re + b.im * b.im
    if denom == 0:
        denom = DIVISION_FLOOR
    return Complex(
        (a.re * b.re + a.im * b.im) / denom,
        (a.im * b.re - a.re * b.im) / denom,
    )


def scale(z: Complex, factor: float) -> Complex:
    return Complex(z.re * factor, z.im * factor)


def _pow_int(base: Complex, exponent: int) -> Complex:
    if exponent == 0:
        return ONE
    if exponent < 0:
        return div(ONE, _pow_int(base, -exponent))
    result = ONE
    current = base
    while exponent > 0:
        if exponent % 2 == 1:
            result = mul(result, current)
        current = mul(current, current)
        exponent //= 2
    return result


def pow(z: Complex, exponent: Exponent) -> Complex:
    """Raise ``z`` to a real or complex ``exponent``.

    Small integer exponents use exponentiation by squaring; everything else
    goes through the polar form.
    """

    if isinstance(exponent, Real):
        e = Complex(float(exponent), 0.0)
    else:
        e = Complex(float(exponent.re), float(exponent.im))

    r = math.hypot(z.re, z.im)
    if r == 0:
        return ZERO

    theta = math.atan2(z.im, z.re)
    if abs(e.im) < IMAGINARY_EPSILON:
        k = e.re
        if math.isfinite(k) and k.is_integer() and abs(k) <= INTEGER_POWER_LIMIT:
            return _pow_int(z, int(k))
        r_pow = _real_power(r, k)
        angle = theta * k
        return Complex(r_pow * math.cos(angle), r_pow * math.sin(angle))

    log_r = math.log(max(r, LOG_FLOOR))
    magnitude_ = _saturating(math.exp, e.re * log_r - e.im * theta)
    angle = e.im * log_r + e.re * theta
    return Complex(magnitude_ * math.cos(angle), magnitude_ * math.sin(angle))


def magnitude(z: Complex) -> float:
    return math.hypot(z.re, z.im)


def sin(z: Complex) -> Complex:
    return Complex(
        math.sin(z.re) * _saturating(math.cosh, z.im),
        math.cos(z.re) * _saturating(math.sinh, z.im),
    )


def cos(z: Complex) -> Complex:
    return Complex(
        math.cos(z.re) * _saturating(math.cosh, z.im),
        -math.sin(z.re) * _saturating(math.sinh, z.im),
    )


def exp(z: Complex) -> Complex:
    mag = _saturating(math.exp, z.re)
    return Complex(mag * math.cos(z.im), mag * math.sin(z.im))


def log(z: Complex) -> Complex:
    r = max(math.hypot(z.re, z.im), LOG_FLOOR)
    return Complex(math.log(r), math.atan2(z.im, z.re))


@dataclass(frozen=True)
class ComplexOps:
    """Read-only bundle of complex functions handed to user formulas."""

    complex: Callable[[float, float], Complex]
    add: Callable[[Complex, Complex], Complex]
    sub: Callable[[Complex, Complex], Complex]
    mul: Callable[[Complex, Complex], Complex]
    div: Callable[[Complex, Complex], Complex]
    scale: Callable[[Complex, float], Complex]
    pow: Callable[[Complex, Exponent], Complex]
    magnitude: Callable[[Complex], float]
    sin: Callable[[Complex], Complex]
    cos: Callable[[Complex], Complex]
    exp: Callable[[Complex], Complex]
    log: Callable[[Complex], Complex]


OPS = ComplexOps(
    complex=complex_,
    add=add,
    sub=sub,
    mul=mul,
    div=div,
    scale=scale,
    pow=pow,
    magnitude=magnitude,
    sin=sin,
    cos=cos,
    exp=exp,
    log=log,
)
