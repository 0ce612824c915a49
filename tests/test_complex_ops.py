"""Tests for the complex arithmetic handed to formulas."""

import cmath
import dataclasses
import math
import unittest

from fractals import complex_ops
from fractals.complex_ops import OPS, ZERO, Complex, is_complex_like, sanitize_complex


def repeated_product(z, n):
    result = Complex(1.0, 0.0)
    for _ in range(abs(n)):
        result = complex_ops.mul(result, z)
    if n < 0:
        result = complex_ops.div(Complex(1.0, 0.0), result)
    return result


class TestCase(unittest.TestCase):

    def assertComplexAlmostEqual(self, a, b, rel=1e-9):
        tol = rel * max(1.0, math.hypot(b.re, b.im))
        self.assertTrue(abs(a.re - b.re) <= tol and abs(a.im - b.im) <= tol, f"{a} != {b}")

    def test_basic_arithmetic(self):
        a = Complex(1.0, 2.0)
        b = Complex(3.0, -1.0)
        self.assertEqual(complex_ops.add(a, b), Complex(4.0, 1.0))
        self.assertEqual(complex_ops.sub(a, b), Complex(-2.0, 3.0))
        self.assertEqual(complex_ops.mul(a, b), Complex(5.0, 5.0))
        self.assertComplexAlmostEqual(complex_ops.div(complex_ops.mul(a, b), b), a)
        self.assertEqual(complex_ops.scale(a, 2.0), Complex(2.0, 4.0))

    def test_integer_pow_matches_repeated_multiplication(self):
        z = Complex(0.7, -0.4)
        for n in range(-32, 33):
            self.assertComplexAlmostEqual(complex_ops.pow(z, n), repeated_product(z, n))

    def test_pow_with_complex_exponent_that_is_real(self):
        z = Complex(1.1, 0.3)
        self.assertComplexAlmostEqual(complex_ops.pow(z, Complex(3.0, 1e-12)), repeated_product(z, 3))

    def test_pow_at_origin_is_zero(self):
        self.assertEqual(complex_ops.pow(ZERO, 2), ZERO)
        self.assertEqual(complex_ops.pow(ZERO, Complex(0.5, 1.0)), ZERO)

    def test_fractional_pow(self):
        root = complex_ops.pow(Complex(-4.0, 0.0), 0.5)
        self.assertAlmostEqual(root.re, 0.0, places=12)
        self.assertAlmostEqual(root.im, 2.0, places=12)

    def test_complex_pow_matches_builtin(self):
        z = Complex(0.8, 0.6)
        e = Complex(1.5, -0.7)
        expected = complex(0.8, 0.6) ** complex(1.5, -0.7)
        result = complex_ops.pow(z, e)
        self.assertAlmostEqual(result.re, expected.real, places=10)
        self.assertAlmostEqual(result.im, expected.imag, places=10)

    def test_division_by_zero_is_finite(self):
        result = complex_ops.div(Complex(1.0, 1.0), ZERO)
        self.assertTrue(math.isfinite(result.re))
        self.assertTrue(math.isfinite(result.im))

    def test_log_has_floor(self):
        result = complex_ops.log(ZERO)
        self.assertAlmostEqual(result.re, math.log(1e-12))
        self.assertEqual(result.im, 0.0)

    def test_transcendental_functions(self):
        z = Complex(0.3, -0.2)
        builtin = complex(0.3, -0.2)
        for name in ("sin", "cos", "exp"):
            expected = getattr(cmath, name)(builtin)
            result = getattr(complex_ops, name)(z)
            self.assertAlmostEqual(result.re, expected.real, places=12)
            self.assertAlmostEqual(result.im, expected.imag, places=12)

    def test_overflow_saturates_to_infinity(self):
        result = complex_ops.exp(Complex(1e6, 0.0))
        self.assertEqual(result.re, math.inf)

    def test_magnitude(self):
        self.assertEqual(complex_ops.magnitude(Complex(3.0, 4.0)), 5.0)

    def test_complex_like(self):
        self.assertTrue(is_complex_like(Complex(1.0, 2.0)))
        self.assertTrue(is_complex_like({"re": 1, "im": 2.5}))
        self.assertFalse(is_complex_like({"re": True, "im": 0}))
        self.assertFalse(is_complex_like(42))
        self.assertFalse(is_complex_like(None))

    def test_sanitize_complex(self):
        self.assertEqual(sanitize_complex({"re": 1, "im": 2}), Complex(1.0, 2.0))
        self.assertEqual(sanitize_complex(Complex(math.nan, 0.0)), ZERO)
        self.assertEqual(sanitize_complex(Complex(math.inf, 1.0)), ZERO)
        self.assertEqual(sanitize_complex("nope"), ZERO)

    def test_ops_namespace_is_read_only(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            OPS.add = None
        self.assertEqual(OPS.complex(1, 2), Complex(1.0, 2.0))


if __name__ == "__main__":
    unittest.main()
