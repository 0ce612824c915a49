"""Frame orchestration: backend choice, band streaming and request supersession."""

from __future__ import annotations

import logging
import time
from typing import Iterator, Optional

import numpy as np

from .accelerated import AcceleratedBackend, is_eligible
from .colors import make_helpers
from .config import EngineConfig
from .filters import low_pass
from .formulas import FormulaSet, compile_formulas
from .kernel import PlaneMapping, iterate_escape, iterate_soft, seed_variables, shade_pixel
from .protocol import Bitmap, Chunk, Done, RenderError, RenderMode, RenderRequest, RenderResponse

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class RenderScheduler:
    """Turns render requests into response streams.

    ``latest_id`` is advanced by whoever submits requests. A scalar render
    checks it before every band and stops quietly once a newer request
    exists; chunks already emitted are not retracted.
    """

    def __init__(self, config: Optional[EngineConfig] = None, backend: Optional[AcceleratedBackend] = None):
        self.config = config or EngineConfig()
        self._backend = backend
        self.latest_id = 0

    def supersede(self, request_id: int) -> None:
        if request_id > self.latest_id:
            self.latest_id = request_id

    def is_current(self, request_id: int) -> bool:
        return request_id >= self.latest_id

    @property
    def backend(self) -> AcceleratedBackend:
        if self._backend is None:
            self._backend = AcceleratedBackend(device=self.config.device)
        return self._backend

    def render(self, request: RenderRequest) -> Iterator[RenderResponse]:
        """Yield zero or more chunks followed by exactly one terminal response.

        Nothing at all is yielded when the request is superseded before it
        finishes.
        """

        self.supersede(request.id)
        start = time.perf_counter()
        payload = request.payload

        try:
            formulas = compile_formulas(payload.equation_source, payload.interior_source, payload.exterior_source)
        except Exception as exc:
            logger.exception("Compiling formulas for request %d failed", request.id)
            yield RenderError(request.id, f"{type(exc).__name__}: {exc}")
            return
        if formulas.errors and self.config.strict_formulas:
            yield RenderError(request.id, "; ".join(str(error) for error in formulas.errors))
            return
        warnings = tuple(str(error) for error in formulas.errors)

        if self.config.accelerated and formulas.ok and is_eligible(payload) and self.backend.available:
            try:
                pixels = self.backend.render(payload)
            except Exception:
                logger.warning("Accelerated render failed, falling back to the scalar path", exc_info=True)
            else:
                if not self.is_current(request.id):
                    return
                pixels = low_pass(pixels, payload.low_pass)
                yield Bitmap(request.id, pixels, _elapsed_ms(start), warnings)
                return

        try:
            for chunk in self._render_bands(request, formulas):
                yield chunk
        except Exception as exc:
            logger.exception("Scalar render of request %d failed", request.id)
            yield RenderError(request.id, f"{type(exc).__name__}: {exc}")
            return

        if self.is_current(request.id):
            elapsed = _elapsed_ms(start)
            logger.debug("Request %d rendered in %.1f ms", request.id, elapsed)
            yield Done(request.id, elapsed, warnings)

    def _render_bands(self, request: RenderRequest, formulas: FormulaSet) -> Iterator[Chunk]:
        payload = request.payload
        width, height = payload.width, payload.height
        rows_per_band = self.config.band_rows(height)

        for start_y in range(0, height, rows_per_band):
            if not self.is_current(request.id):
                logger.debug("Request %d superseded at row %d", request.id, start_y)
                return
            rows = min(rows_per_band, height - start_y)
            pixels = render_band(request.payload, formulas, start_y, rows)
            pixels = low_pass(pixels, payload.low_pass)
            yield Chunk(request.id, start_y, rows, width, pixels)


def render_band(payload, formulas: FormulaSet, start_y: int, rows: int) -> np.ndarray:
    """Compute ``rows`` image rows starting at ``start_y`` on the scalar path."""

    width = payload.width
    mapping = PlaneMapping.create(width, payload.height, payload.center, payload.scale, payload.rotation)
    helpers = make_helpers(payload.color_scheme.value)
    soft = payload.render_mode is RenderMode.SOFT
    max_iterations = payload.max_iterations
    pixels = np.empty((rows, width, 4), dtype=np.uint8)
    pixels[..., 3] = 255

    for y in range(rows):
        actual_y = start_y + y
        for x in range(width):
            plane_value = mapping.point(x, actual_y)
            z, c, exponent = seed_variables(payload.plane_variable, plane_value, payload.manual_values)
            if soft:
                result = iterate_soft(formulas.equation, z, c, exponent, max_iterations, payload.soft_sharpness)
            else:
                result = iterate_escape(formulas.equation, z, c, exponent, max_iterations)
            color = shade_pixel(
                result,
                max_iterations,
                formulas.interior,
                formulas.exterior,
                helpers,
                spin_interior=payload.spin_interior_coloring,
                spin_exterior=payload.spin_exterior_coloring,
            )
            pixels[y, x, 0] = color.r
            pixels[y, x, 1] = color.g
            pixels[y, x, 2] = color.b
    return pixels
