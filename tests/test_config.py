"""Tests for engine configuration."""

import unittest

from fractals.config import EngineConfig


class TestCase(unittest.TestCase):

    def test_defaults(self):
        config = EngineConfig.from_env({})
        self.assertTrue(config.accelerated)
        self.assertIsNone(config.device)
        self.assertFalse(config.strict_formulas)

    def test_environment_overrides(self):
        config = EngineConfig.from_env(
            {
                "FRACTALS_ACCELERATED": "off",
                "FRACTALS_DEVICE": "/CPU:0",
                "FRACTALS_STRICT_FORMULAS": "Yes",
            }
        )
        self.assertFalse(config.accelerated)
        self.assertEqual(config.device, "/CPU:0")
        self.assertTrue(config.strict_formulas)

    def test_invalid_flag(self):
        with self.assertRaises(ValueError):
            EngineConfig.from_env({"FRACTALS_ACCELERATED": "maybe"})

    def test_band_rows(self):
        config = EngineConfig()
        self.assertEqual(config.band_rows(1), 2)
        self.assertEqual(config.band_rows(360), 2)
        self.assertEqual(config.band_rows(719), 3)
        self.assertEqual(config.band_rows(1080), 6)

    def test_validation(self):
        with self.assertRaises(ValueError):
            EngineConfig(target_bands=0)


if __name__ == "__main__":
    unittest.main()
