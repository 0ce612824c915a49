"""Public API for the fractal compute engine."""

from .accelerated import AcceleratedBackend, BackendFailure, is_eligible
from .animation import apply_zoom, compute_zoom_factors, recenter
from .colors import RGB, Helpers, colorize, hsl_to_rgb, make_helpers, spin_color
from .complex_ops import OPS, Complex, ComplexOps
from .config import EngineConfig
from .formulas import (
    DEFAULT_EQUATION_SOURCE,
    DEFAULT_EXTERIOR_SOURCE,
    DEFAULT_INTERIOR_SOURCE,
    FEATHER_EQUATION_SOURCE,
    CompileError,
    ShapeError,
    compile_equation,
    compile_exterior,
    compile_formulas,
    compile_interior,
)
from .kernel import EscapeSample, OrbitStats, PixelResult, PixelState, iterate_escape, iterate_soft, shade_pixel
from .presets import PRESETS, apply_preset
from .protocol import (
    Bitmap,
    Chunk,
    ColorScheme,
    Done,
    RenderError,
    RenderMode,
    RenderPayload,
    RenderRequest,
    VariableKey,
)
from .scheduler import RenderScheduler
from .worker import FrameCompositor, RenderWorker

__all__ = [
    "AcceleratedBackend",
    "BackendFailure",
    "Bitmap",
    "Chunk",
    "ColorScheme",
    "CompileError",
    "Complex",
    "ComplexOps",
    "DEFAULT_EQUATION_SOURCE",
    "DEFAULT_EXTERIOR_SOURCE",
    "DEFAULT_INTERIOR_SOURCE",
    "Done",
    "EngineConfig",
    "EscapeSample",
    "FEATHER_EQUATION_SOURCE",
    "FrameCompositor",
    "Helpers",
    "OPS",
    "OrbitStats",
    "PRESETS",
    "PixelResult",
    "PixelState",
    "RGB",
    "RenderError",
    "RenderMode",
    "RenderPayload",
    "RenderRequest",
    "RenderScheduler",
    "RenderWorker",
    "ShapeError",
    "VariableKey",
    "apply_preset",
    "apply_zoom",
    "colorize",
    "compile_equation",
    "compile_exterior",
    "compile_formulas",
    "compile_interior",
    "compute_zoom_factors",
    "hsl_to_rgb",
    "is_eligible",
    "iterate_escape",
    "iterate_soft",
    "make_helpers",
    "recenter",
    "shade_pixel",
    "spin_color",
]
