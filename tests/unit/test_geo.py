import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from theway.domain.geo import distance_meters, within_trade_distance


class GeoTests(unittest.TestCase):
    def test_same_point_is_zero(self) -> None:
        self.assertAlmostEqual(0.0, distance_meters(37.5219, 126.8954, 37.5219, 126.8954))

    def test_one_degree_latitude_is_about_111_km(self) -> None:
        self.assertAlmostEqual(111_195, distance_meters(0, 0, 1, 0), delta=50)

    def test_trade_distance_limit(self) -> None:
        # ~0.0027 deg latitude is roughly 300 m
        self.assertTrue(within_trade_distance(37.5219, 126.8954, 37.5246, 126.8954))
        self.assertFalse(within_trade_distance(37.5219, 126.8954, 37.5319, 126.8954))
        self.assertTrue(within_trade_distance(37.5219, 126.8954, 37.5319, 126.8954, limit_meters=2000))


if __name__ == "__main__":
    unittest.main()
