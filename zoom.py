import os
import sys
import warnings
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

_VERBOSE_FLAGS = {"--verbose", "-v"}
_cli_verbose = any(arg in _VERBOSE_FLAGS for arg in sys.argv[1:])
_env_log_level = os.environ.get("TF_CPP_MIN_LOG_LEVEL")
_suppress_messages = (not _cli_verbose) and _env_log_level != "0"

if _suppress_messages and _env_log_level is None:
    os.environ["TF_CPP_MIN_LOG_LEVEL"] = "3"

if _suppress_messages:
    warnings.filterwarnings(
        "ignore",
        message=r"Protobuf gencode version .* is exactly one major version older than the runtime version .*",
        category=UserWarning,
        module="google.protobuf",
    )

VERBOSE = _cli_verbose


def log(message, *args, **kwargs):
    if VERBOSE:
        print(message, *args, **kwargs)


import json
import logging

import tensorflow as tf
import numpy as np

if _suppress_messages:
    tf.get_logger().setLevel("ERROR")
    for handler in tf.get_logger().handlers:
        handler.setLevel("ERROR")

# Imports for visualization
import PIL.Image
import imageio

from fractals import (
    PRESETS,
    Complex,
    EngineConfig,
    FrameCompositor,
    RenderPayload,
    RenderWorker,
    apply_preset,
    apply_zoom,
    compute_zoom_factors,
    recenter,
)
from fractals.protocol import INITIAL_MANUAL_VALUES

log("TensorFlow version: %s" % tf.__version__)

from argparse import ArgumentParser, ArgumentTypeError


@dataclass
class OutputConfig:
    mode: str
    gif_path: Path | None
    image_path: Path | None
    frame_dir: Path | None
    image_format: str


def parse_complex(text: str) -> Complex:
    parts = [part.strip() for part in text.split(",")]
    if len(parts) != 2:
        raise ArgumentTypeError(f"expected RE,IM but got '{text}'")
    try:
        return Complex(float(parts[0]), float(parts[1]))
    except ValueError as exc:
        raise ArgumentTypeError(f"expected RE,IM but got '{text}'") from exc


def parse_pixel(text: str) -> tuple[float, float]:
    value = parse_complex(text)
    return value.re, value.im


def read_source(value: str) -> str:
    """Formula options accept literal text or ``@path`` to read a file."""

    if value.startswith("@"):
        return Path(value[1:]).expanduser().read_text(encoding="utf-8")
    return value


def build_parser():
    parser = ArgumentParser(description="Render escape-time and soft-escape fractals from editable formulas.")

    parser.add_argument('--payload', type=str, metavar='PAYLOAD_JSON',
                        help='JSON file holding a render payload (camelCase or snake_case keys). Other options override it.')
    parser.add_argument('--preset', type=str, choices=sorted(PRESETS),
                        help='start from a named preset (equation, plane variable, manual values, center and scale)')

    parser.add_argument('--width', type=int, dest='width', metavar='WIDTH',
                        help='image width in pixels (default 480)')
    parser.add_argument('--height', type=int, dest='height', metavar='HEIGHT',
                        help='image height in pixels (default 360)')
    parser.add_argument('--center-re', type=float, dest='center_re', metavar='CENTER_RE',
                        help='real part of the view center')
    parser.add_argument('--center-im', type=float, dest='center_im', metavar='CENTER_IM',
                        help='imaginary part of the view center')
    parser.add_argument('--scale', type=float, dest='scale', metavar='SCALE',
                        help='width of the view in the complex plane')
    parser.add_argument('--rotation', type=float, dest='rotation', metavar='RADIANS',
                        help='view rotation in radians')
    parser.add_argument('--max-iterations', type=int, dest='max_iterations', metavar='MAX_ITERATIONS',
                        help='maximum number of iterations per pixel (1-1000)')

    parser.add_argument('--plane-variable', choices=['z', 'c', 'exponent'], dest='plane_variable',
                        help='which variable is driven by the pixel position')
    parser.add_argument('--manual-z', type=parse_complex, dest='manual_z', metavar='RE,IM',
                        help='initial z when it is not the plane variable')
    parser.add_argument('--manual-c', type=parse_complex, dest='manual_c', metavar='RE,IM',
                        help='parameter c when it is not the plane variable')
    parser.add_argument('--manual-exponent', type=parse_complex, dest='manual_exponent', metavar='RE,IM',
                        help='exponent when it is not the plane variable')

    parser.add_argument('--equation', type=read_source, dest='equation_source', metavar='SOURCE',
                        help='iteration formula body, or @file')
    parser.add_argument('--interior', type=read_source, dest='interior_source', metavar='SOURCE',
                        help='interior color mapper body, or @file')
    parser.add_argument('--exterior', type=read_source, dest='exterior_source', metavar='SOURCE',
                        help='exterior color mapper body, or @file ("" uses the palette)')

    parser.add_argument('--color-scheme', choices=['classic', 'fire', 'ice'], dest='color_scheme',
                        help='escape palette')
    parser.add_argument('--render-mode', choices=['escape', 'soft'], dest='render_mode',
                        help='hard escape-time cutoff or soft survival blending')
    parser.add_argument('--soft-sharpness', type=float, dest='soft_sharpness', metavar='SHARPNESS',
                        help='sigmoid sharpness for soft mode (0.05-0.6)')
    parser.add_argument('--low-pass', type=float, dest='low_pass', metavar='STRENGTH',
                        help='smoothing strength applied to the image (0-1)')
    parser.add_argument('--spin-interior', action='store_const', const=True, dest='spin_interior_coloring',
                        help='color the interior from orbit statistics regardless of the interior mapper')
    parser.add_argument('--spin-exterior', action='store_const', const=True, dest='spin_exterior_coloring',
                        help='color escaped points from orbit statistics instead of the palette')

    parser.add_argument('--frames', type=int, dest='frames', metavar='FRAMES', default=1,
                        help='number of frames to generate')
    parser.add_argument('--zoom-factor', type=float, dest='zoom_factor', metavar='ZOOM_FACTOR', default=0.8,
                        help='the factor by which to multiply the scale each frame. Choose < 1 for zoom in, >1 for zoom out')
    parser.add_argument('--final-zoom', type=float, default=None,
                        help='overall scale applied by the last frame. If set, overrides --zoom-factor.')
    parser.add_argument('--easing', type=str, default='ease',
                        help='temporal curve used for variable zoom: "linear" or "ease" for smooth ease-in-out.')
    parser.add_argument('--focus', type=parse_pixel, metavar='X,Y',
                        help='pixel to recenter on before zooming')

    parser.add_argument('--mode', choices=['image', 'gif', 'frames'], default='image',
                        help='write the final frame, an animated GIF, or a numbered frame sequence')
    parser.add_argument('--output', type=str,
                        help='destination file (image/gif) or directory (frames)')
    parser.add_argument('--format', type=str, dest='format', metavar='FORMAT', default='png',
                        help='file format for image-based outputs. Can be any extension supported by Pillow.')

    parser.add_argument('--no-accelerated', dest='accelerated', action='store_false', default=None,
                        help='always use the scalar streaming path')
    parser.add_argument('--device', type=str, default=None,
                        help='TensorFlow device for the accelerated path, e.g. /CPU:0')
    parser.add_argument('--strict-formulas', dest='strict_formulas', action='store_true', default=None,
                        help='fail instead of falling back to built-in formulas when one does not compile')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose logging, including TensorFlow and hardware diagnostics.')

    return parser


_PAYLOAD_OPTIONS = (
    'width',
    'height',
    'scale',
    'rotation',
    'max_iterations',
    'plane_variable',
    'equation_source',
    'interior_source',
    'exterior_source',
    'color_scheme',
    'render_mode',
    'soft_sharpness',
    'low_pass',
    'spin_interior_coloring',
    'spin_exterior_coloring',
)


def build_payload(opt, parser: ArgumentParser) -> RenderPayload:
    if opt.payload:
        try:
            with open(Path(opt.payload).expanduser(), encoding="utf-8") as handle:
                base = RenderPayload.from_dict(json.load(handle))
        except (OSError, json.JSONDecodeError, ValueError, TypeError, KeyError) as exc:
            parser.error(f"could not load payload {opt.payload}: {exc}")
        values: dict[str, Any] = {f.name: getattr(base, f.name) for f in fields(RenderPayload)}
        values['manual_values'] = dict(base.manual_values)
    else:
        values = {'width': 480, 'height': 360}

    if opt.preset:
        values = apply_preset(values, opt.preset)

    for name in _PAYLOAD_OPTIONS:
        value = getattr(opt, name)
        if value is not None:
            values[name] = value

    center = values.get('center', Complex(-0.5, 0.0))
    if opt.center_re is not None or opt.center_im is not None:
        re = opt.center_re if opt.center_re is not None else center[0]
        im = opt.center_im if opt.center_im is not None else center[1]
        values['center'] = Complex(re, im)

    manual = dict(values.get('manual_values') or {})
    for key, value in (('z', opt.manual_z), ('c', opt.manual_c), ('exponent', opt.manual_exponent)):
        if value is not None:
            manual[key] = value
    if manual:
        values['manual_values'] = manual

    if "manual_values" in values:
        values["manual_values"] = {**INITIAL_MANUAL_VALUES, **values["manual_values"]}
    try:
        return RenderPayload(**values)
    except (ValueError, TypeError) as exc:
        parser.error(str(exc))


def resolve_output_config(opt, parser: ArgumentParser) -> OutputConfig:
    image_format = (opt.format or "png").lower().lstrip(".") or "png"
    output = Path(opt.output).expanduser() if opt.output else None

    if opt.mode == "gif":
        path = output or Path("movie.gif")
        if path.suffix and path.suffix.lower() != ".gif":
            parser.error("GIF outputs must end with .gif.")
        return OutputConfig(opt.mode, path.with_suffix(".gif").resolve(), None, None, image_format)

    if opt.mode == "frames":
        frame_dir = (output or Path("./frames")).resolve()
        if frame_dir.exists() and not frame_dir.is_dir():
            parser.error("--output must be a directory in frames mode.")
        return OutputConfig(opt.mode, None, None, frame_dir, image_format)

    path = output or Path(f"frame_final.{image_format}")
    expected_suffix = f".{image_format}"
    if path.suffix and path.suffix.lower() != expected_suffix:
        parser.error(f"--output extension {path.suffix} does not match --format {image_format}.")
    return OutputConfig(opt.mode, None, path.with_suffix(expected_suffix).resolve(), None, image_format)


def _pil_format_name(ext: str) -> str:
    upper = ext.upper()
    if upper == "JPG":
        return "JPEG"
    if upper == "TIF":
        return "TIFF"
    return upper


def write_single_image(image: PIL.Image.Image, output_path: Path, image_format: str) -> None:
    """Write a single image to ``output_path`` using the provided format."""

    pil_format = _pil_format_name(image_format)
    if pil_format == "JPEG":
        image = image.convert("RGB")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    image.save(str(output_path), format=pil_format)


def write_frame_sequence(image: PIL.Image.Image, frame_dir: Path, index: int, digits: int, image_format: str) -> Path:
    """Persist a frame in a numbered sequence inside ``frame_dir``."""

    frame_path = frame_dir / f"frame{index:0{digits}d}.{image_format}"
    write_single_image(image, frame_path, image_format)
    return frame_path


def build_engine_config(opt) -> EngineConfig:
    config = EngineConfig.from_env()
    overrides = {}
    if opt.accelerated is not None:
        overrides['accelerated'] = opt.accelerated
    if opt.strict_formulas is not None:
        overrides['strict_formulas'] = opt.strict_formulas
    if opt.device:
        overrides['device'] = opt.device
    return replace(config, **overrides)


def main():
    parser = build_parser()
    opt = parser.parse_args()

    global VERBOSE
    VERBOSE = bool(opt.verbose)
    logging.basicConfig(
        level=logging.DEBUG if VERBOSE else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    payload = build_payload(opt, parser)
    output_config = resolve_output_config(opt, parser)
    config = build_engine_config(opt)

    if opt.focus is not None:
        payload = recenter(payload, *opt.focus)

    per_frame_factors = compute_zoom_factors(
        opt.frames,
        opt.zoom_factor,
        final_zoom=opt.final_zoom,
        easing=opt.easing,
    )
    frame_digits = max(3, len(str(max(opt.frames - 1, 0))))

    gif_writer = None
    if output_config.gif_path is not None:
        output_config.gif_path.parent.mkdir(parents=True, exist_ok=True)
        gif_writer = imageio.get_writer(str(output_config.gif_path), mode='I', duration=0.1, loop=0)

    final_image: PIL.Image.Image | None = None
    reported: set[str] = set()
    compositor = FrameCompositor()

    try:
        with RenderWorker(config) as worker:
            for i in range(opt.frames):
                print("frame {0} out of {1}".format(i, opt.frames), end='\r')
                worker.render(payload, compositor)

                if compositor.error is not None:
                    print()
                    print(f"Render failed: {compositor.error}", file=sys.stderr)
                    return 1
                for message in compositor.warnings:
                    if message not in reported:
                        reported.add(message)
                        print(f"Formula error, using built-in default: {message}", file=sys.stderr)
                log("frame {0} rendered in {1:.1f} ms".format(i, compositor.elapsed_ms or 0.0))

                frame_array = np.array(compositor.frame, copy=True)
                final_image = PIL.Image.fromarray(frame_array)
                if gif_writer is not None:
                    gif_writer.append_data(frame_array[..., :3])
                if output_config.frame_dir is not None:
                    write_frame_sequence(final_image, output_config.frame_dir, i, frame_digits, output_config.image_format)

                zoom_factor = per_frame_factors[i] if per_frame_factors.size else opt.zoom_factor
                payload = apply_zoom(payload, zoom_factor)
    finally:
        if gif_writer is not None:
            gif_writer.close()

    print()
    if output_config.image_path is not None and final_image is not None:
        write_single_image(final_image, output_config.image_path, output_config.image_format)
    return 0


if __name__ == '__main__':
    sys.exit(main())
