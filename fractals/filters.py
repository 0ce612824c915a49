"""Post-processing filters applied to assembled RGBA pixels."""

from __future__ import annotations

import numpy as np


def low_pass(pixels: np.ndarray, strength: float) -> np.ndarray:
    """Mix an RGBA8 image with its 3x3 box blur.

    ``strength`` 0 returns the input untouched, 1 returns the fully blurred
    image. Borders are edge-clamped and alpha is preserved.
    """

    if strength <= 0.0 or pixels.size == 0:
        return pixels

    rgb = pixels[..., :3].astype(np.float64)
    height, width = rgb.shape[:2]
    padded = np.pad(rgb, ((1, 1), (1, 1), (0, 0)), mode="edge")
    blurred = np.zeros_like(rgb)
    for dy in range(3):
        for dx in range(3):
            blurred += padded[dy:dy + height, dx:dx + width]
    blurred /= 9.0

    strength = min(float(strength), 1.0)
    mixed = rgb * (1.0 - strength) + blurred * strength
    out = pixels.copy()
    out[..., :3] = np.clip(np.floor(mixed + 0.5), 0, 255).astype(np.uint8)
    return out
