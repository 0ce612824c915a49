"""Tests for command line parsing."""

import json
import os
import tempfile
import unittest
from argparse import ArgumentTypeError

import zoom
from fractals.complex_ops import Complex
from fractals.protocol import ColorScheme, RenderMode, VariableKey


def parse(*argv):
    parser = zoom.build_parser()
    opt = parser.parse_args(list(argv))
    return zoom.build_payload(opt, parser), opt, parser


class TestCase(unittest.TestCase):

    def test_parse_complex(self):
        self.assertEqual(zoom.parse_complex("-0.8, 0.156"), Complex(-0.8, 0.156))
        with self.assertRaises(ArgumentTypeError):
            zoom.parse_complex("1")
        with self.assertRaises(ArgumentTypeError):
            zoom.parse_complex("a,b")

    def test_defaults(self):
        payload, opt, _ = parse()
        self.assertEqual((payload.width, payload.height), (480, 360))
        self.assertEqual(payload.center, Complex(-0.5, 0.0))
        self.assertEqual(opt.mode, "image")

    def test_options_override_preset(self):
        payload, _, _ = parse(
            "--preset", "julia",
            "--width", "64",
            "--height", "32",
            "--manual-c", "0.285,0.01",
            "--center-im", "0.2",
            "--color-scheme", "fire",
            "--render-mode", "soft",
            "--spin-exterior",
        )
        self.assertIs(payload.plane_variable, VariableKey.Z)
        self.assertEqual(payload.manual_values["c"], Complex(0.285, 0.01))
        self.assertEqual(payload.center, Complex(0.0, 0.2))
        self.assertIs(payload.color_scheme, ColorScheme.FIRE)
        self.assertIs(payload.render_mode, RenderMode.SOFT)
        self.assertTrue(payload.spin_exterior_coloring)
        self.assertFalse(payload.spin_interior_coloring)

    def test_payload_file_and_source_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            payload_path = os.path.join(tmp, "view.json")
            with open(payload_path, "w", encoding="utf-8") as handle:
                json.dump({"width": 20, "height": 10, "maxIterations": 77, "colorScheme": "ice"}, handle)
            source_path = os.path.join(tmp, "eq.py")
            with open(source_path, "w", encoding="utf-8") as handle:
                handle.write("return ops.add(ops.mul(z, z), c)\n")

            payload, _, _ = parse("--payload", payload_path, "--equation", "@" + source_path, "--height", "12")

        self.assertEqual((payload.width, payload.height), (20, 12))
        self.assertEqual(payload.max_iterations, 77)
        self.assertIs(payload.color_scheme, ColorScheme.ICE)
        self.assertEqual(payload.equation_source, "return ops.add(ops.mul(z, z), c)\n")

    def test_invalid_payload_exits(self):
        with self.assertRaises(SystemExit):
            parse("--max-iterations", "5000")

    def test_engine_config_flags(self):
        _, opt, _ = parse("--no-accelerated", "--strict-formulas", "--device", "/CPU:0")
        config = zoom.build_engine_config(opt)
        self.assertFalse(config.accelerated)
        self.assertTrue(config.strict_formulas)
        self.assertEqual(config.device, "/CPU:0")

    def test_output_config(self):
        _, opt, parser = parse("--mode", "gif", "--output", "out/zoom.gif")
        output = zoom.resolve_output_config(opt, parser)
        self.assertEqual(output.gif_path.name, "zoom.gif")
        self.assertIsNone(output.image_path)

        _, opt, parser = parse("--output", "final.jpg")
        with self.assertRaises(SystemExit):
            zoom.resolve_output_config(opt, parser)


if __name__ == "__main__":
    unittest.main()
