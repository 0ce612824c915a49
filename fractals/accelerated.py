"""Whole-frame TensorFlow rendering for the built-in formulas."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
import tensorflow as tf

from .formulas import (
    DEFAULT_EQUATION_SOURCE,
    DEFAULT_EXTERIOR_SOURCE,
    DEFAULT_INTERIOR_SOURCE,
    FEATHER_EQUATION_SOURCE,
    normalize_source,
)
from .kernel import ESCAPE_RADIUS_SQUARED
from .protocol import RenderMode, RenderPayload

logger = logging.getLogger(__name__)

MAX_ACCELERATED_ITERATIONS = 4096
INTEGER_POWER_BITS = 6

DTYPE = tf.float64

EQUATION_MODES = {
    normalize_source(DEFAULT_EQUATION_SOURCE): 0,
    normalize_source(FEATHER_EQUATION_SOURCE): 1,
}
_DEFAULT_INTERIOR = normalize_source(DEFAULT_INTERIOR_SOURCE)
_DEFAULT_EXTERIORS = {normalize_source(DEFAULT_EXTERIOR_SOURCE), ""}


class BackendFailure(RuntimeError):
    """The accelerated backend could not set up or run a render."""


def equation_mode(source: str) -> Optional[int]:
    return EQUATION_MODES.get(normalize_source(source))


def is_eligible(payload: RenderPayload) -> bool:
    """Whether ``payload`` only uses formulas the backend reimplements."""

    return (
        equation_mode(payload.equation_source) is not None
        and normalize_source(payload.interior_source) == _DEFAULT_INTERIOR
        and normalize_source(payload.exterior_source) in _DEFAULT_EXTERIORS
        and payload.max_iterations <= MAX_ACCELERATED_ITERATIONS
    )


def select_device(preferred: Optional[str] = None) -> str:
    """Pick the first visible GPU, falling back to the CPU."""

    if preferred:
        return preferred
    gpus = tf.config.list_physical_devices("GPU")
    if gpus:
        try:
            for gpu in gpus:
                tf.config.experimental.set_memory_growth(gpu, True)
            logger.debug("GPU found, using %s", gpus[0].name)
            return "/GPU:0"
        except RuntimeError as exc:
            # Memory growth can only be set before the GPU is initialised.
            logger.debug("Could not configure GPU memory growth: %s", exc)
            return "/GPU:0"
    logger.debug("No GPU found, using CPU")
    return "/CPU:0"


def _mul(ar, ai, br, bi):
    return ar * br - ai * bi, ar * bi + ai * br


def _div(ar, ai, br, bi):
    denom = br * br + bi * bi
    denom = tf.where(tf.equal(denom, 0.0), tf.constant(1e-12, DTYPE), denom)
    return (ar * br + ai * bi) / denom, (ai * br - ar * bi) / denom


def _pow(zr, zi, er, ei):
    r = tf.abs(tf.complex(zr, zi))
    theta = tf.math.atan2(zi, zr)

    imag_zero = tf.abs(ei) < 1e-9
    is_integer = tf.logical_and(
        imag_zero,
        tf.logical_and(
            tf.logical_and(tf.math.is_finite(er), tf.equal(er, tf.floor(er))),
            tf.abs(er) <= 32.0,
        ),
    )

    # Exponentiation by squaring with a per-pixel exponent.
    n = tf.cast(tf.where(is_integer, tf.abs(er), tf.zeros_like(er)), tf.int32)
    res_r = tf.ones_like(zr)
    res_i = tf.zeros_like(zi)
    cur_r, cur_i = zr, zi
    for _ in range(INTEGER_POWER_BITS):
        odd = tf.equal(tf.math.floormod(n, 2), 1)
        mr, mi = _mul(res_r, res_i, cur_r, cur_i)
        res_r = tf.where(odd, mr, res_r)
        res_i = tf.where(odd, mi, res_i)
        cur_r, cur_i = _mul(cur_r, cur_i, cur_r, cur_i)
        n = tf.math.floordiv(n, 2)
    inv_r, inv_i = _div(tf.ones_like(zr), tf.zeros_like(zi), res_r, res_i)
    negative = er < 0.0
    int_r = tf.where(negative, inv_r, res_r)
    int_i = tf.where(negative, inv_i, res_i)

    real_mag = tf.pow(r, er)
    real_angle = theta * er
    log_r = tf.math.log(tf.maximum(r, tf.constant(1e-12, DTYPE)))
    complex_mag = tf.exp(er * log_r - ei * theta)
    complex_angle = ei * log_r + er * theta
    mag = tf.where(imag_zero, real_mag, complex_mag)
    angle = tf.where(imag_zero, real_angle, complex_angle)

    pr = tf.where(is_integer, int_r, mag * tf.cos(angle))
    pi = tf.where(is_integer, int_i, mag * tf.sin(angle))
    at_origin = tf.equal(r, 0.0)
    return tf.where(at_origin, tf.zeros_like(pr), pr), tf.where(at_origin, tf.zeros_like(pi), pi)


def _equation(zr, zi, cr, ci, er, ei, mode: int):
    if mode == 1:
        three = tf.fill(tf.shape(zr), tf.constant(3.0, DTYPE))
        nr, ni = _pow(zr, zi, three, tf.zeros_like(zr))
        denom = 1.0 + (zr * zr + zi * zi)
        qr, qi = _div(nr, ni, denom, tf.zeros_like(denom))
        out_r, out_i = qr + cr, qi + ci
    else:
        pr, pi = _pow(zr, zi, er, ei)
        out_r, out_i = pr + cr, pi + ci
    finite = tf.logical_and(tf.math.is_finite(out_r), tf.math.is_finite(out_i))
    return tf.where(finite, out_r, tf.zeros_like(out_r)), tf.where(finite, out_i, tf.zeros_like(out_i))


@tf.function
def _escape_run(zr, zi, cr, ci, er, ei, max_iterations, mode: int):
    """Escape-time iteration; pixels stop updating once they leave the radius."""

    max_iterations = tf.cast(max_iterations, tf.int32)
    i = tf.constant(0, dtype=tf.int32)
    active = tf.ones_like(zr, tf.bool)
    iters = tf.fill(tf.shape(zr), max_iterations)
    zeros = tf.zeros_like(zr)
    radius = tf.constant(ESCAPE_RADIUS_SQUARED, DTYPE)

    def cond(i, zr, zi, active, iters, length, mag_sum, angle_sum, max_mag):
        return tf.logical_and(tf.less(i, max_iterations), tf.reduce_any(active))

    def body(i, zr, zi, active, iters, length, mag_sum, angle_sum, max_mag):
        nzr, nzi = _equation(zr, zi, cr, ci, er, ei, mode)
        zr = tf.where(active, nzr, zr)
        zi = tf.where(active, nzi, zi)
        mag = tf.abs(tf.complex(zr, zi))
        length = length + tf.cast(active, DTYPE)
        mag_sum = mag_sum + tf.where(active, mag, zeros)
        angle_sum = angle_sum + tf.where(active, tf.math.atan2(zi, zr), zeros)
        max_mag = tf.where(active, tf.maximum(max_mag, mag), max_mag)
        escaped = tf.logical_and(active, zr * zr + zi * zi > radius)
        iters = tf.where(escaped, i, iters)
        active = tf.logical_and(active, tf.logical_not(escaped))
        return i + 1, zr, zi, active, iters, length, mag_sum, angle_sum, max_mag

    loop_vars = (i, zr, zi, active, iters, zeros, zeros, zeros, zeros)
    _, zr, zi, _, iters, length, mag_sum, angle_sum, max_mag = tf.while_loop(cond, body, loop_vars)
    survival = tf.where(iters < max_iterations, zeros, tf.ones_like(zr))
    return iters, survival, length, mag_sum, angle_sum, max_mag


@tf.function
def _soft_run(zr, zi, cr, ci, er, ei, max_iterations, sharpness, mode: int):
    """Soft-escape iteration over the full budget with a decaying survival weight."""

    max_iterations = tf.cast(max_iterations, tf.int32)
    i = tf.constant(0, dtype=tf.int32)
    first = tf.fill(tf.shape(zr), max_iterations)
    zeros = tf.zeros_like(zr)
    survival = tf.ones_like(zr)
    radius = tf.constant(ESCAPE_RADIUS_SQUARED, DTYPE)

    def cond(i, zr, zi, survival, first, length, mag_sum, angle_sum, max_mag):
        return tf.less(i, max_iterations)

    def body(i, zr, zi, survival, first, length, mag_sum, angle_sum, max_mag):
        zr, zi = _equation(zr, zi, cr, ci, er, ei, mode)
        overflow = zr * zr + zi * zi - radius
        over = overflow > 0.0
        survival = tf.where(over, survival * tf.math.sigmoid(-sharpness * overflow), survival)
        first = tf.where(tf.logical_and(over, tf.equal(first, max_iterations)), i, first)
        alive = survival > 0.0
        mag = tf.abs(tf.complex(zr, zi))
        length = length + tf.where(alive, survival, zeros)
        mag_sum = mag_sum + tf.where(alive, survival * mag, zeros)
        angle_sum = angle_sum + tf.where(alive, survival * tf.math.atan2(zi, zr), zeros)
        max_mag = tf.where(alive, tf.maximum(max_mag, survival * mag), max_mag)
        return i + 1, zr, zi, survival, first, length, mag_sum, angle_sum, max_mag

    loop_vars = (i, zr, zi, survival, first, zeros, zeros, zeros, zeros)
    _, _, _, survival, first, length, mag_sum, angle_sum, max_mag = tf.while_loop(cond, body, loop_vars)
    return first, survival, length, mag_sum, angle_sum, max_mag


def _channel(value):
    rounded = tf.floor(tf.clip_by_value(value, 0.0, 255.0) + 0.5)
    return tf.where(tf.math.is_finite(value), rounded, tf.zeros_like(rounded))


def _hsl_to_rgb(h, s, l):
    zero = tf.zeros_like(h)
    s = zero + s
    l = zero + l
    h = tf.where(tf.math.is_finite(h), tf.math.floormod(h, 360.0), zero)
    c = (1.0 - tf.abs(2.0 * l - 1.0)) * s
    hp = h / 60.0
    x = c * (1.0 - tf.abs(tf.math.floormod(hp, 2.0) - 1.0))
    sector = tf.floor(hp)

    def pick(*per_sector):
        out = zero
        for index, value in enumerate(per_sector):
            out = tf.where(tf.equal(sector, float(index)), value, out)
        return out

    r1 = pick(c, x, zero, zero, x, c)
    g1 = pick(x, c, c, x, zero, zero)
    b1 = pick(zero, zero, x, c, c, x)
    m = l - c / 2.0
    return _channel((r1 + m) * 255.0), _channel((g1 + m) * 255.0), _channel((b1 + m) * 255.0)


def _palette(t, scheme: str):
    if scheme == "fire":
        return _hsl_to_rgb(30.0 + 40.0 * t, 0.9, 0.5 + 0.2 * (1.0 - t))
    if scheme == "ice":
        return _hsl_to_rgb(180.0 + 80.0 * t, 0.6, 0.45 + 0.15 * t)
    return _hsl_to_rgb(200.0 + 120.0 * t, 0.65, 0.5)


def _spin(length, mag_sum, angle_sum, max_mag):
    length = tf.maximum(length, 1.0)
    avg_magnitude = mag_sum / length
    mean_angle = angle_sum / length
    hue = 210.0 + 90.0 * tf.sin(mean_angle)
    saturation = 0.5 + 0.3 * tf.minimum(1.0, max_mag / 4.0)
    lightness = 0.25 + 0.5 * tf.minimum(1.0, avg_magnitude / 3.0)
    return _hsl_to_rgb(hue, saturation, lightness)


def _colorize(iters, survival, stats, payload: RenderPayload):
    max_iterations = payload.max_iterations
    interior = _spin(*stats)
    if payload.spin_exterior_coloring:
        exterior = interior
    else:
        shade = tf.cast(iters, DTYPE) / float(max_iterations)
        exterior = _palette(shade, payload.color_scheme.value)

    if payload.render_mode is RenderMode.SOFT:
        weight = tf.clip_by_value(1.0 - survival, 0.0, 1.0)
        channels = []
        for a, b in zip(interior, exterior):
            mixed = _channel(a * (1.0 - weight) + b * weight)
            channels.append(tf.where(weight <= 0.0, a, tf.where(weight >= 1.0, b, mixed)))
        return channels

    inside = iters >= max_iterations
    return [tf.where(inside, a, b) for a, b in zip(interior, exterior)]


@dataclass
class BackendContext:
    """Device plus the pixel offset grid for one viewport size."""

    device: str
    width: int
    height: int
    offsets_x: tf.Tensor
    offsets_y: tf.Tensor


class AcceleratedBackend:
    """Lazily initialised, single-owner TensorFlow renderer.

    The context is created on first use and rebuilt only when the viewport
    size changes. Callers must not invoke :meth:`render` concurrently.
    """

    def __init__(self, device: Optional[str] = None):
        self._preferred_device = device
        self._context: Optional[BackendContext] = None
        self._available: Optional[bool] = None

    @property
    def context(self) -> Optional[BackendContext]:
        return self._context

    @property
    def available(self) -> bool:
        """Whether a TensorFlow device can be set up; checked once."""

        if self._available is None:
            try:
                device = select_device(self._preferred_device)
                with tf.device(device):
                    tf.zeros((1,), dtype=DTYPE).numpy()
            except (tf.errors.OpError, RuntimeError, ValueError) as exc:
                logger.warning("Accelerated backend unavailable: %s", exc)
                self._available = False
            else:
                self._available = True
        return self._available

    def _ensure_context(self, width: int, height: int) -> BackendContext:
        context = self._context
        if context is not None and context.width == width and context.height == height:
            return context
        device = context.device if context is not None else select_device(self._preferred_device)
        with tf.device(device):
            xs = tf.range(width, dtype=DTYPE) - width / 2
            ys = tf.range(height, dtype=DTYPE) - height / 2
            offsets_x, offsets_y = tf.meshgrid(xs, ys)
        self._context = BackendContext(device, width, height, offsets_x, offsets_y)
        logger.debug("Accelerated context ready on %s for %dx%d", device, width, height)
        return self._context

    def render(self, payload: RenderPayload) -> np.ndarray:
        """Render the whole frame and return RGBA8 pixels of shape ``(height, width, 4)``."""

        mode = equation_mode(payload.equation_source)
        if mode is None:
            raise BackendFailure("equation is not one of the accelerated built-in formulas")
        if payload.max_iterations > MAX_ACCELERATED_ITERATIONS:
            raise BackendFailure(f"max_iterations above {MAX_ACCELERATED_ITERATIONS}")
        try:
            return self._render(payload, mode)
        except (tf.errors.OpError, RuntimeError, ValueError, TypeError) as exc:
            raise BackendFailure(f"accelerated render failed: {exc}") from exc

    def _render(self, payload: RenderPayload, mode: int) -> np.ndarray:
        start = time.perf_counter()
        context = self._ensure_context(payload.width, payload.height)
        unit = payload.scale / payload.width
        cos_rotation = math.cos(payload.rotation)
        sin_rotation = math.sin(payload.rotation)

        with tf.device(context.device):
            dx = context.offsets_x * unit
            dy = context.offsets_y * unit
            plane_re = payload.center.re + (dx * cos_rotation - dy * sin_rotation)
            plane_im = payload.center.im + (dx * sin_rotation + dy * cos_rotation)

            def seed(key: str):
                if payload.plane_variable == key:
                    return plane_re, plane_im
                value = payload.manual_values[key]
                return (
                    tf.fill(tf.shape(plane_re), tf.constant(value.re, DTYPE)),
                    tf.fill(tf.shape(plane_im), tf.constant(value.im, DTYPE)),
                )

            zr, zi = seed("z")
            cr, ci = seed("c")
            er, ei = seed("exponent")
            max_iterations = tf.constant(payload.max_iterations, dtype=tf.int32)

            if payload.render_mode is RenderMode.SOFT:
                sharpness = tf.constant(payload.soft_sharpness, DTYPE)
                iters, survival, *stats = _soft_run(zr, zi, cr, ci, er, ei, max_iterations, sharpness, mode)
            else:
                iters, survival, *stats = _escape_run(zr, zi, cr, ci, er, ei, max_iterations, mode)

            r, g, b = _colorize(iters, survival, stats, payload)
            alpha = tf.fill(tf.shape(r), tf.constant(255.0, DTYPE))
            pixels = tf.cast(tf.stack([r, g, b, alpha], axis=-1), tf.uint8)

        result = pixels.numpy()
        logger.debug("Accelerated render took %.1f ms", (time.perf_counter() - start) * 1000.0)
        return result
