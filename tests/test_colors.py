"""Tests for palettes, HSL conversion and orbit coloring."""

import math
import unittest

from fractals.colors import (
    BLACK,
    RGB,
    blend,
    classic,
    colorize,
    fire,
    hsl_to_rgb,
    ice,
    make_helpers,
    sanitize_rgb,
    spin_color,
)
from fractals.complex_ops import ZERO
from fractals.kernel import OrbitStats


class TestCase(unittest.TestCase):

    def test_primary_hues(self):
        self.assertEqual(hsl_to_rgb(0, 1, 0.5), RGB(255, 0, 0))
        self.assertEqual(hsl_to_rgb(120, 1, 0.5), RGB(0, 255, 0))
        self.assertEqual(hsl_to_rgb(240, 1, 0.5), RGB(0, 0, 255))
        self.assertEqual(hsl_to_rgb(360, 1, 0.5), RGB(255, 0, 0))
        self.assertEqual(hsl_to_rgb(-120, 1, 0.5), RGB(0, 0, 255))

    def test_grey_and_extremes(self):
        self.assertEqual(hsl_to_rgb(77, 0, 0.5), RGB(128, 128, 128))
        self.assertEqual(hsl_to_rgb(10, 1, 0), BLACK)
        self.assertEqual(hsl_to_rgb(10, 1, 1), RGB(255, 255, 255))

    def test_non_finite_hue_is_treated_as_zero(self):
        self.assertEqual(hsl_to_rgb(math.nan, 1, 0.5), hsl_to_rgb(0, 1, 0.5))

    def test_channels_stay_in_range(self):
        for h in range(0, 720, 7):
            for s in (0.0, 0.3, 1.0, 1.7):
                for l in (-0.2, 0.0, 0.4, 1.0, 1.3):
                    color = hsl_to_rgb(h, s, l)
                    for channel in color:
                        self.assertIsInstance(channel, int)
                        self.assertTrue(0 <= channel <= 255)

    def test_palettes(self):
        self.assertEqual(classic(0.0), hsl_to_rgb(200, 0.65, 0.5))
        self.assertEqual(classic(1.0), hsl_to_rgb(320, 0.65, 0.5))
        self.assertEqual(fire(0.5), hsl_to_rgb(50, 0.9, 0.5 + 0.2 * 0.5))
        self.assertEqual(ice(1.0), hsl_to_rgb(260, 0.6, 0.45 + 0.15))

    def test_colorize_falls_back_to_classic(self):
        self.assertEqual(colorize("fire", 0.25), fire(0.25))
        self.assertEqual(colorize("sepia", 0.25), classic(0.25))

    def test_spin_color(self):
        orbit = OrbitStats(length=0, magnitude_sum=0.0, angle_sum=0.0, max_magnitude=0.0, last=ZERO)
        self.assertEqual(spin_color(orbit), hsl_to_rgb(210, 0.5, 0.25))

        orbit = OrbitStats(length=4, magnitude_sum=24.0, angle_sum=2 * math.pi, max_magnitude=8.0, last=ZERO)
        self.assertEqual(spin_color(orbit), hsl_to_rgb(210 + 90 * math.sin(math.pi / 2), 0.5 + 0.3, 0.25 + 0.5))

    def test_blend(self):
        a = RGB(0, 100, 200)
        b = RGB(200, 100, 0)
        self.assertEqual(blend(a, b, 0.0), a)
        self.assertEqual(blend(a, b, 1.0), b)
        self.assertEqual(blend(a, b, 0.5), RGB(100, 100, 100))
        self.assertEqual(blend(a, b, 3.0), b)

    def test_sanitize_rgb(self):
        self.assertEqual(sanitize_rgb({"r": 300, "g": -5, "b": 12.5}), RGB(255, 0, 13))
        self.assertEqual(sanitize_rgb({"r": math.nan, "g": 1, "b": 2}), RGB(0, 1, 2))
        self.assertEqual(sanitize_rgb(42), BLACK)

    def test_helpers_palette_follows_scheme(self):
        self.assertIs(make_helpers("ice").palette, ice)
        self.assertIs(make_helpers("unknown").palette, classic)
        self.assertIs(make_helpers("fire"), make_helpers("fire"))


if __name__ == "__main__":
    unittest.main()
