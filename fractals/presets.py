"""Named starting points for exploration."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping, NamedTuple

from .complex_ops import Complex
from .formulas import DEFAULT_EQUATION_SOURCE, FEATHER_EQUATION_SOURCE
from .protocol import INITIAL_MANUAL_VALUES, VariableKey


class Preset(NamedTuple):
    label: str
    equation_source: str
    plane_variable: VariableKey
    manual_values: Mapping[str, Complex]
    center: Complex
    scale: float


PRESETS: Mapping[str, Preset] = MappingProxyType(
    {
        "mandelbrot": Preset(
            label="Mandelbrot",
            equation_source=DEFAULT_EQUATION_SOURCE,
            plane_variable=VariableKey.C,
            manual_values=INITIAL_MANUAL_VALUES,
            center=Complex(-0.5, 0.0),
            scale=3.0,
        ),
        "feather": Preset(
            label="Feather Fractal (z^3 / (1 + |z|^2) + c)",
            equation_source=FEATHER_EQUATION_SOURCE,
            plane_variable=VariableKey.C,
            manual_values=INITIAL_MANUAL_VALUES,
            center=Complex(0.0, 0.0),
            scale=2.5,
        ),
        "julia": Preset(
            label="Julia (c = -0.8 + 0.156i)",
            equation_source=DEFAULT_EQUATION_SOURCE,
            plane_variable=VariableKey.Z,
            manual_values=MappingProxyType(
                {
                    "z": Complex(0.0, 0.0),
                    "c": Complex(-0.8, 0.156),
                    "exponent": Complex(2.0, 0.0),
                }
            ),
            center=Complex(0.0, 0.0),
            scale=3.0,
        ),
    }
)


def apply_preset(fields: Mapping[str, Any], name: str) -> dict[str, Any]:
    """Return payload keyword arguments with preset ``name`` applied on top of ``fields``."""

    preset = PRESETS[name]
    updated = dict(fields)
    updated.update(
        equation_source=preset.equation_source,
        plane_variable=preset.plane_variable,
        manual_values=dict(preset.manual_values),
        center=preset.center,
        scale=preset.scale,
    )
    return updated
