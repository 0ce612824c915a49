"""Tests for the TensorFlow whole-frame backend."""

import unittest

import numpy as np

from fractals.accelerated import (
    MAX_ACCELERATED_ITERATIONS,
    AcceleratedBackend,
    BackendFailure,
    equation_mode,
    is_eligible,
    select_device,
)
from fractals.formulas import DEFAULT_EQUATION_SOURCE, FEATHER_EQUATION_SOURCE, compile_formulas
from fractals.protocol import RenderPayload
from fractals.scheduler import render_band


def scalar_frame(payload):
    formulas = compile_formulas(payload.equation_source, payload.interior_source, payload.exterior_source)
    return render_band(payload, formulas, 0, payload.height)


class TestEligibility(unittest.TestCase):

    def test_builtin_equations_are_recognised(self):
        self.assertEqual(equation_mode(DEFAULT_EQUATION_SOURCE), 0)
        self.assertEqual(equation_mode("  return ops.add(ops.pow(z,  exponent), c)\n"), 0)
        self.assertEqual(equation_mode(FEATHER_EQUATION_SOURCE), 1)
        self.assertIsNone(equation_mode("return ops.add(ops.mul(z, z), c)"))

    def test_eligibility(self):
        self.assertTrue(is_eligible(RenderPayload(width=8, height=8)))
        self.assertTrue(is_eligible(RenderPayload(width=8, height=8, exterior_source="")))
        self.assertTrue(is_eligible(RenderPayload(width=8, height=8, equation_source=FEATHER_EQUATION_SOURCE)))
        self.assertFalse(is_eligible(RenderPayload(width=8, height=8, equation_source="z")))
        self.assertFalse(is_eligible(RenderPayload(width=8, height=8, interior_source="return helpers.palette(0)")))
        self.assertFalse(is_eligible(RenderPayload(width=8, height=8, exterior_source="return helpers.palette(1)")))
        self.assertGreaterEqual(MAX_ACCELERATED_ITERATIONS, 1000)

    def test_preferred_device_is_used(self):
        self.assertEqual(select_device("/CPU:0"), "/CPU:0")


class TestBackend(unittest.TestCase):

    def setUp(self):
        self.backend = AcceleratedBackend(device="/CPU:0")
        if not self.backend.available:
            self.skipTest("TensorFlow could not create a CPU context")

    def assertMostlyClose(self, actual, expected, fraction=0.99, tolerance=2):
        self.assertEqual(actual.shape, expected.shape)
        self.assertEqual(actual.dtype, np.uint8)
        difference = np.abs(actual.astype(np.int32) - expected.astype(np.int32)).max(axis=-1)
        self.assertGreaterEqual(np.mean(difference <= tolerance), fraction)

    def test_matches_scalar_escape_render(self):
        payload = RenderPayload(width=32, height=24, max_iterations=60)
        pixels = self.backend.render(payload)
        self.assertEqual(pixels.shape, (24, 32, 4))
        self.assertTrue((pixels[..., 3] == 255).all())
        self.assertMostlyClose(pixels, scalar_frame(payload))

    def test_matches_scalar_julia_render(self):
        payload = RenderPayload(
            width=24,
            height=24,
            center=(0, 0),
            max_iterations=60,
            plane_variable="z",
            manual_values={"z": (0, 0), "c": (-0.8, 0.156), "exponent": (2, 0)},
            color_scheme="fire",
        )
        self.assertMostlyClose(self.backend.render(payload), scalar_frame(payload))

    def test_matches_scalar_feather_render(self):
        payload = RenderPayload(
            width=64,
            height=48,
            center=(0, 0),
            scale=2.5,
            max_iterations=40,
            equation_source=FEATHER_EQUATION_SOURCE,
            spin_exterior_coloring=True,
        )
        self.assertMostlyClose(self.backend.render(payload), scalar_frame(payload))

    def test_matches_scalar_soft_render(self):
        payload = RenderPayload(width=24, height=16, max_iterations=40, render_mode="soft", color_scheme="ice")
        self.assertMostlyClose(self.backend.render(payload), scalar_frame(payload))

    def test_context_is_rebuilt_only_on_resize(self):
        self.assertIsNone(self.backend.context)
        self.backend.render(RenderPayload(width=8, height=6, max_iterations=5))
        context = self.backend.context
        self.backend.render(RenderPayload(width=8, height=6, max_iterations=9, scale=1.0))
        self.assertIs(self.backend.context, context)
        self.backend.render(RenderPayload(width=10, height=6, max_iterations=5))
        self.assertIsNot(self.backend.context, context)
        self.assertEqual(self.backend.context.device, context.device)

    def test_unsupported_equation_raises(self):
        with self.assertRaises(BackendFailure):
            self.backend.render(RenderPayload(width=8, height=8, equation_source="z"))


if __name__ == "__main__":
    unittest.main()
