"""Tests for bearing and distance helpers."""

import unittest
import sys
from pathlib import Path

# Add src to path so we can import busmatch
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from busmatch.geo import bearing, distance, reciprocal, signed_angle_difference
from busmatch.models import Coordinate


class TestDistance(unittest.TestCase):
    """Test great-circle distance."""

    def test_same_point_is_zero(self):
        point = Coordinate(25.0, 121.5)
        self.assertEqual(distance(point, point), 0.0)

    def test_thousandth_of_longitude_in_taipei(self):
        """0.001 degrees of longitude at 25N is roughly 100 m."""
        d = distance(Coordinate(25.0, 121.5), Coordinate(25.0, 121.501))
        self.assertGreater(d, 95)
        self.assertLess(d, 110)

    def test_symmetric(self):
        a = Coordinate(25.033, 121.565)
        b = Coordinate(25.047, 121.517)
        self.assertAlmostEqual(distance(a, b), distance(b, a), places=6)


class TestBearing(unittest.TestCase):
    """Test compass bearings."""

    def setUp(self):
        self.origin = Coordinate(25.0, 121.5)

    def test_cardinal_directions(self):
        self.assertAlmostEqual(bearing(self.origin, Coordinate(25.001, 121.5)), 0.0, places=6)
        self.assertAlmostEqual(bearing(self.origin, Coordinate(25.0, 121.501)), 90.0, places=6)
        self.assertAlmostEqual(bearing(self.origin, Coordinate(24.999, 121.5)), 180.0, places=6)
        self.assertAlmostEqual(bearing(self.origin, Coordinate(25.0, 121.499)), 270.0, places=6)

    def test_range_and_reciprocal(self):
        """Bearings stay in [0, 360) and reversing the pair adds 180 degrees."""
        targets = [
            Coordinate(25.001, 121.501),
            Coordinate(24.998, 121.503),
            Coordinate(24.999, 121.4991),
            Coordinate(25.0004, 121.4975),
            Coordinate(25.001, 121.5),
        ]
        for target in targets:
            forward = bearing(self.origin, target)
            backward = bearing(target, self.origin)
            self.assertGreaterEqual(forward, 0.0)
            self.assertLess(forward, 360.0)
            self.assertGreaterEqual(backward, 0.0)
            self.assertLess(backward, 360.0)
            self.assertAlmostEqual((backward - forward) % 360, 180.0, places=9)

    def test_reciprocal(self):
        self.assertEqual(reciprocal(90), 270)
        self.assertEqual(reciprocal(270), 90)


class TestSignedAngleDifference(unittest.TestCase):
    """Test signed angle differences."""

    def test_wraps_across_north(self):
        self.assertEqual(signed_angle_difference(10, 350), 20)
        self.assertEqual(signed_angle_difference(350, 10), -20)

    def test_half_turn_is_positive(self):
        self.assertEqual(signed_angle_difference(180, 0), 180)
        self.assertEqual(signed_angle_difference(0, 180), 180)


if __name__ == "__main__":
    unittest.main()
