"""Compile user formula text into sandboxed, sanitized evaluators.

There are three formula slots:

* the iteration equation, called as ``equation(z, c, exponent, ops)`` and
  returning a complex value;
* the interior mapper, called as ``interior(orbit, ops, helpers)`` and
  returning a color;
* the exterior mapper, called as ``exterior(sample, orbit, ops, helpers)``
  and returning a color.

A formula is the body of a Python function (or a bare expression, which is
treated as the return value). It is parsed, checked against a small
whitelist, run once on canonical inputs, and only then wrapped into an
evaluator whose every return value is sanitized. Every run is also
limited in how much work it may do.
"""

from __future__ import annotations

import ast
import copy
import logging
import operator
import re
import sys
import textwrap
import types
from dataclasses import dataclass, field, fields
from functools import lru_cache
from typing import Any, Callable, Optional

from .colors import BLACK, RGB, Helpers, is_rgb_like, make_helpers, sanitize_rgb
from .complex_ops import OPS, ZERO, Complex, ComplexOps, is_complex_like, sanitize_complex
from .kernel import EscapeSample, OrbitStats

logger = logging.getLogger(__name__)

DEFAULT_EQUATION_SOURCE = "return ops.add(ops.pow(z, exponent), c)"

FEATHER_EQUATION_SOURCE = """
numerator = ops.pow(z, 3)
denom = 1 + (z.re * z.re + z.im * z.im)
return ops.add(ops.div(numerator, ops.complex(denom, 0)), c)
""".strip()

DEFAULT_INTERIOR_SOURCE = """
length = max(orbit.length, 1)
avg_magnitude = orbit.magnitude_sum / length
mean_angle = orbit.angle_sum / length
hue = 210 + 90 * helpers.sin(mean_angle)
saturation = 0.5 + 0.3 * min(1, orbit.max_magnitude / 4)
lightness = 0.25 + 0.5 * min(1, avg_magnitude / 3)
return helpers.hsl_to_rgb(hue, saturation, lightness)
""".strip()

DEFAULT_EXTERIOR_SOURCE = "return helpers.palette(sample.shade)"

MAX_SOURCE_LENGTH = 20_000
MAX_RANGE_LENGTH = 100_000
MAX_SEQUENCE_LENGTH = 100_000
MAX_INTEGER_BITS = 4096
STEP_LIMIT = 200_000


class FormulaLimitExceeded(RuntimeError):
    """A formula tried to do more work than a single evaluation may."""


def _bounded_range(*args: int) -> range:
    values = range(*args)
    if len(values) > MAX_RANGE_LENGTH:
        raise FormulaLimitExceeded(f"range() is limited to {MAX_RANGE_LENGTH} items")
    return values


def _check_arithmetic(op: str, left: Any, right: Any) -> None:
    if op == "Pow":
        if isinstance(left, int) and isinstance(right, int) and right > 0 and abs(left) > 1:
            if right * left.bit_length() > MAX_INTEGER_BITS:
                raise FormulaLimitExceeded("integer power is too large")
    elif op == "Mult":
        if isinstance(left, int) and isinstance(right, int):
            if left.bit_length() + right.bit_length() > MAX_INTEGER_BITS:
                raise FormulaLimitExceeded("integer product is too large")
        elif isinstance(left, (str, bytes, tuple, list)) and isinstance(right, int):
            if len(left) * right > MAX_SEQUENCE_LENGTH:
                raise FormulaLimitExceeded("repeated sequence is too long")
        elif isinstance(right, (str, bytes, tuple, list)) and isinstance(left, int):
            if len(right) * left > MAX_SEQUENCE_LENGTH:
                raise FormulaLimitExceeded("repeated sequence is too long")
    elif op == "LShift":
        if isinstance(left, int) and isinstance(right, int):
            if left.bit_length() + right > MAX_INTEGER_BITS:
                raise FormulaLimitExceeded("integer shift is too large")
    elif op == "Mod":
        if isinstance(left, (str, bytes)):
            raise FormulaLimitExceeded("string formatting is not allowed in formulas")


_GUARDED_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "Pow": operator.pow,
    "Mult": operator.mul,
    "LShift": operator.lshift,
    "Mod": operator.mod,
}


def _guarded_binop(op: str, left: Any, right: Any) -> Any:
    _check_arithmetic(op, left, right)
    return _GUARDED_OPERATORS[op](left, right)


def _bounded_pow(base: Any, exp: Any, mod: Any = None) -> Any:
    if mod is not None:
        return pow(base, exp, mod)
    return _guarded_binop("Pow", base, exp)


SAFE_BUILTINS = {
    "abs": abs,
    "bool": bool,
    "float": float,
    "int": int,
    "len": len,
    "max": max,
    "min": min,
    "pow": _bounded_pow,
    "range": _bounded_range,
    "round": round,
    "sum": sum,
}

_FORBIDDEN_NODES: tuple[type, ...] = (
    ast.Import,
    ast.ImportFrom,
    ast.Global,
    ast.Nonlocal,
    ast.ClassDef,
    ast.FunctionDef,
    ast.AsyncFunctionDef,
    ast.Lambda,
    ast.GeneratorExp,
    ast.JoinedStr,
    ast.While,
    ast.Try,
    getattr(ast, "TryStar", ast.Try),
    ast.With,
    ast.AsyncWith,
    ast.AsyncFor,
    ast.Delete,
    ast.Await,
    ast.Yield,
    ast.YieldFrom,
)

# Formulas may only read the fields and functions of the objects they are given.
ALLOWED_ATTRIBUTES = frozenset(
    Complex._fields
    + RGB._fields
    + OrbitStats._fields
    + EscapeSample._fields
    + tuple(f.name for f in fields(ComplexOps))
    + tuple(f.name for f in fields(Helpers))
)

_ENTRY_POINT = "__formula__"
_ARITHMETIC = "__arithmetic__"


class CompileError(ValueError):
    """A formula could not be turned into an evaluator."""

    def __init__(self, slot: str, message: str):
        super().__init__(f"{slot}: {message}")
        self.slot = slot
        self.message = message


class ShapeError(CompileError):
    """A formula ran but returned a value of the wrong structure."""


@dataclass(frozen=True)
class FormulaSlot:
    name: str
    params: tuple[str, ...]
    smoke_args: Callable[[], tuple]
    accepts: Callable[[Any], bool]
    sanitize: Callable[[Any], Any]
    fallback: Any
    shape_message: str


def _test_orbit() -> OrbitStats:
    return OrbitStats(length=1, magnitude_sum=1.0, angle_sum=0.0, max_magnitude=1.0, last=ZERO)


EQUATION = FormulaSlot(
    name="Equation",
    params=("z", "c", "exponent", "ops"),
    smoke_args=lambda: (ZERO, ZERO, Complex(2.0, 0.0), OPS),
    accepts=is_complex_like,
    sanitize=sanitize_complex,
    fallback=ZERO,
    shape_message="The equation must return ops.complex(...) or a mapping with numeric 're' and 'im'",
)

INTERIOR = FormulaSlot(
    name="Interior",
    params=("orbit", "ops", "helpers"),
    smoke_args=lambda: (_test_orbit(), OPS, make_helpers()),
    accepts=is_rgb_like,
    sanitize=sanitize_rgb,
    fallback=BLACK,
    shape_message="Interior function must return helpers.hsl_to_rgb(...) or a mapping with numeric 'r', 'g', 'b'",
)

EXTERIOR = FormulaSlot(
    name="Exterior",
    params=("sample", "orbit", "ops", "helpers"),
    smoke_args=lambda: (EscapeSample(1, 2, 0.5, 1.0), _test_orbit(), OPS, make_helpers()),
    accepts=is_rgb_like,
    sanitize=sanitize_rgb,
    fallback=BLACK,
    shape_message="Exterior function must return helpers.palette(...) or a mapping with numeric 'r', 'g', 'b'",
)


def _code_objects(code: Any) -> set:
    found = {code}
    for const in code.co_consts:
        if isinstance(const, types.CodeType):
            found |= _code_objects(const)
    return found


class _StepLimiter:
    """Run a formula function with a budget of executed lines per call."""

    def __init__(self, fn: Callable[..., Any], limit: int = STEP_LIMIT):
        self.fn = fn
        self.limit = limit
        self.codes = frozenset(_code_objects(fn.__code__))

    def __call__(self, *args: Any) -> Any:
        codes = self.codes
        limit = self.limit
        steps = 0

        def trace_lines(frame, event, arg):
            nonlocal steps
            if event == "line":
                steps += 1
                if steps > limit:
                    raise FormulaLimitExceeded(f"formula ran for more than {limit} steps")
            return trace_lines

        def trace_calls(frame, event, arg):
            return trace_lines if frame.f_code in codes else None

        previous = sys.gettrace()
        sys.settrace(trace_calls)
        try:
            return self.fn(*args)
        finally:
            sys.settrace(previous)


@dataclass(frozen=True)
class CompiledFormula:
    """A validated formula. Calls never raise and always return sanitized values."""

    slot: FormulaSlot
    source: str
    fn: Callable[..., Any] = field(repr=False)

    def __call__(self, *args: Any) -> Any:
        try:
            return self.slot.sanitize(self.fn(*args))
        except Exception:
            # User code may fail on any pixel; degrade to the slot's neutral value.
            return self.slot.fallback


def normalize_source(source: str) -> str:
    """Collapse runs of whitespace so formatting changes don't affect matching."""

    return re.sub(r"\s+", " ", source).strip()


class _SandboxValidator(ast.NodeVisitor):
    def __init__(self, slot: FormulaSlot):
        self.slot = slot
        self.loaded: list[ast.Name] = []
        self.bound: set[str] = set(slot.params)

    def fail(self, node: ast.AST, message: str) -> None:
        line = max(getattr(node, "lineno", 1) - 1, 1)
        raise CompileError(self.slot.name, f"line {line}: {message}")

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, _FORBIDDEN_NODES):
            self.fail(node, f"'{type(node).__name__}' is not allowed in formulas")
        super().generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr not in ALLOWED_ATTRIBUTES:
            self.fail(node, f"access to '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            self.fail(node, f"name '{node.id}' is not allowed")
        if isinstance(node.ctx, ast.Load):
            self.loaded.append(node)
        else:
            self.bound.add(node.id)

    def visit_arg(self, node: ast.arg) -> None:
        self.bound.add(node.arg)

    def check(self, body: list[ast.stmt]) -> None:
        for statement in body:
            self.visit(statement)
        for node in self.loaded:
            if node.id not in self.bound and node.id not in SAFE_BUILTINS:
                self.fail(node, f"unknown name '{node.id}'")


class _ArithmeticGuard(ast.NodeTransformer):
    """Route operators that can grow without bound through ``_guarded_binop``."""

    def _call(self, op: ast.operator, left: ast.expr, right: ast.expr) -> ast.Call:
        return ast.Call(
            func=ast.Name(id=_ARITHMETIC, ctx=ast.Load()),
            args=[ast.Constant(value=type(op).__name__), left, right],
            keywords=[],
        )

    def visit_BinOp(self, node: ast.BinOp) -> ast.AST:
        self.generic_visit(node)
        if type(node.op).__name__ not in _GUARDED_OPERATORS:
            return node
        return ast.copy_location(self._call(node.op, node.left, node.right), node)

    def visit_AugAssign(self, node: ast.AugAssign) -> ast.AST:
        self.generic_visit(node)
        if type(node.op).__name__ not in _GUARDED_OPERATORS:
            return node
        current = copy.deepcopy(node.target)
        current.ctx = ast.Load()
        value = self._call(node.op, current, node.value)
        return ast.copy_location(ast.Assign(targets=[node.target], value=value), node)


def _as_function_source(slot: FormulaSlot, source: str) -> str:
    body = textwrap.dedent(source).strip()
    if not body:
        raise CompileError(slot.name, "source is empty")
    if len(body) > MAX_SOURCE_LENGTH:
        raise CompileError(slot.name, f"source is longer than {MAX_SOURCE_LENGTH} characters")
    try:
        ast.parse(body, mode="eval")
    except (SyntaxError, ValueError, MemoryError, RecursionError):
        pass
    else:
        body = f"return ({body})"
    header = f"def {_ENTRY_POINT}({', '.join(slot.params)}):\n"
    return header + textwrap.indent(body, "    ")


def _build(slot: FormulaSlot, text: str, filename: str) -> Any:
    tree = ast.parse(text, filename=filename)
    function = tree.body[0]
    _SandboxValidator(slot).check(function.body)
    tree = ast.fix_missing_locations(_ArithmeticGuard().visit(tree))
    return compile(tree, filename, "exec")


def _compile(slot: FormulaSlot, source: str) -> CompiledFormula:
    text = _as_function_source(slot, source)
    filename = f"<{slot.name.lower()}>"
    try:
        code = _build(slot, text, filename)
    except CompileError:
        raise
    except SyntaxError as exc:
        line = max((exc.lineno or 2) - 1, 1)
        raise CompileError(slot.name, f"line {line}: {exc.msg}") from exc
    except (ValueError, MemoryError, RecursionError) as exc:
        raise CompileError(slot.name, f"could not parse formula ({type(exc).__name__})") from exc

    namespace: dict[str, Any] = {
        "__builtins__": dict(SAFE_BUILTINS),
        _ARITHMETIC: _guarded_binop,
    }
    exec(code, namespace)
    fn = _StepLimiter(namespace[_ENTRY_POINT])

    try:
        result = fn(*slot.smoke_args())
    except Exception as exc:
        raise CompileError(slot.name, f"{type(exc).__name__}: {exc}") from exc
    if not slot.accepts(result):
        raise ShapeError(slot.name, f"{slot.shape_message}; got {type(result).__name__}.")

    return CompiledFormula(slot=slot, source=source, fn=fn)


@lru_cache(maxsize=64)
def compile_equation(source: str) -> CompiledFormula:
    return _compile(EQUATION, source)


@lru_cache(maxsize=64)
def compile_interior(source: str) -> CompiledFormula:
    return _compile(INTERIOR, source)


@lru_cache(maxsize=64)
def compile_exterior(source: str) -> Optional[CompiledFormula]:
    """Compile an exterior mapper; blank source means "use the palette"."""

    if not source.strip():
        return None
    return _compile(EXTERIOR, source)


DEFAULT_EQUATION = compile_equation(DEFAULT_EQUATION_SOURCE)
DEFAULT_INTERIOR = compile_interior(DEFAULT_INTERIOR_SOURCE)
DEFAULT_EXTERIOR = compile_exterior(DEFAULT_EXTERIOR_SOURCE)


@dataclass(frozen=True)
class FormulaSet:
    """The three evaluators used for one frame, plus any compile failures."""

    equation: CompiledFormula
    interior: CompiledFormula
    exterior: Optional[CompiledFormula]
    errors: tuple[CompileError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


def compile_formulas(equation_source: str, interior_source: str, exterior_source: str) -> FormulaSet:
    """Compile all three slots, substituting the built-in default for any that fail."""

    errors: list[CompileError] = []

    try:
        equation = compile_equation(equation_source)
    except CompileError as exc:
        errors.append(exc)
        equation = DEFAULT_EQUATION
    try:
        interior = compile_interior(interior_source)
    except CompileError as exc:
        errors.append(exc)
        interior = DEFAULT_INTERIOR
    try:
        exterior = compile_exterior(exterior_source)
    except CompileError as exc:
        errors.append(exc)
        exterior = DEFAULT_EXTERIOR

    for error in errors:
        logger.warning("Formula compilation failed, using built-in default: %s", error)
    return FormulaSet(equation, interior, exterior, tuple(errors))
