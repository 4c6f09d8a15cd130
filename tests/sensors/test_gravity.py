"""
Unit tests for navcore/sensors/gravity.py (WGS-84 Somigliana gravity).

Run with: pytest tests/sensors/test_gravity.py -v
"""

import unittest
import numpy as np

from navcore.sensors.gravity import (
    GAMMA_EQUATOR,
    STANDARD_GRAVITY,
    gravity,
    gravity_from_lat_deg,
    gravity_magnitude,
    gravity_vector_ned,
)


class TestGravity(unittest.TestCase):
    def test_equator(self) -> None:
        self.assertAlmostEqual(gravity(0.0), GAMMA_EQUATOR, places=10)

    def test_poles(self) -> None:
        self.assertAlmostEqual(gravity(np.pi / 2), 9.8322, places=3)
        self.assertAlmostEqual(gravity(-np.pi / 2), gravity(np.pi / 2), places=12)

    def test_trondheim(self) -> None:
        self.assertAlmostEqual(gravity_from_lat_deg(63.4305), 9.8218, places=3)

    def test_increases_with_latitude(self) -> None:
        lats = np.deg2rad(np.linspace(0.0, 90.0, 10))
        values = [gravity(lat) for lat in lats]
        self.assertTrue(all(b > a for a, b in zip(values, values[1:])))

    def test_returns_python_float(self) -> None:
        self.assertIsInstance(gravity(0.3), float)


class TestGravityMagnitude(unittest.TestCase):
    def test_default_without_latitude(self) -> None:
        self.assertEqual(gravity_magnitude(), STANDARD_GRAVITY)
        self.assertEqual(gravity_magnitude(None, default_g=9.81), 9.81)

    def test_uses_latitude(self) -> None:
        self.assertEqual(gravity_magnitude(0.5), gravity(0.5))


class TestGravityVector(unittest.TestCase):
    def test_points_down(self) -> None:
        np.testing.assert_array_equal(gravity_vector_ned(9.81), [0.0, 0.0, 9.81])


if __name__ == "__main__":
    unittest.main()
