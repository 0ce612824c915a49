"""Helpers for rendering zoom sequences."""

from __future__ import annotations

from dataclasses import replace

import numpy as np

from .kernel import PlaneMapping
from .protocol import RenderPayload


def compute_zoom_factors(frames: int, zoom_factor: float, *, final_zoom: float | None, easing: str) -> np.ndarray:
    """Compute per-frame scale multipliers for the animation."""

    if frames <= 0:
        return np.array([], dtype=np.float64)

    if final_zoom is not None and final_zoom > 0:
        log_target = np.log(final_zoom)

        def ease_in_out(t: float) -> float:
            return 3 * t ** 2 - 2 * t ** 3

        ease = (lambda u: u) if easing.lower() == "linear" else ease_in_out
        if frames == 1:
            alphas = np.array([1.0], dtype=np.float64)
        else:
            alphas = np.array([ease(i / (frames - 1)) for i in range(frames)], dtype=np.float64)
        alphas = np.clip(alphas, 0.0, 1.0)
        increments = np.diff(np.concatenate(([0.0], alphas)))
        return np.exp(increments * log_target)

    return np.full(frames, np.float64(zoom_factor), dtype=np.float64)


def apply_zoom(payload: RenderPayload, zoom_factor: float) -> RenderPayload:
    return replace(payload, scale=float(np.float64(payload.scale) * np.float64(zoom_factor)))


def recenter(payload: RenderPayload, x: float, y: float) -> RenderPayload:
    """Move the view center to the plane point under pixel ``(x, y)``."""

    mapping = PlaneMapping.create(payload.width, payload.height, payload.center, payload.scale, payload.rotation)
    return replace(payload, center=mapping.point(x, y))
