"""Engine configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be one of {sorted(_TRUE | _FALSE)}, got {raw!r}")


@dataclass(frozen=True)
class EngineConfig:
    """Knobs for the render scheduler and accelerated backend.

    ``device`` is a TensorFlow device string such as ``"/GPU:0"``; ``None``
    picks the first GPU when one is visible and the CPU otherwise.
    """

    accelerated: bool = True
    device: Optional[str] = None
    target_bands: int = 180
    min_band_rows: int = 2
    strict_formulas: bool = False

    def __post_init__(self) -> None:
        if self.target_bands < 1:
            raise ValueError("target_bands must be at least 1")
        if self.min_band_rows < 1:
            raise ValueError("min_band_rows must be at least 1")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        env = os.environ if env is None else env
        device = env.get("FRACTALS_DEVICE") or None
        return cls(
            accelerated=_env_flag(env, "FRACTALS_ACCELERATED", True),
            device=device,
            strict_formulas=_env_flag(env, "FRACTALS_STRICT_FORMULAS", False),
        )

    def band_rows(self, height: int) -> int:
        return max(self.min_band_rows, height // self.target_bands)
