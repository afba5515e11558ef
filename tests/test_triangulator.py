import math
import unittest

from services.market_intel.triangulator import Triangulator, max_pairwise_divergence_pct, relative_diff_pct
from services.market_intel.types import SourceReading, SourceStatus


def _ok(name, **metrics):
    return SourceReading(source_name=name, status=SourceStatus.SUCCESS, metrics=metrics)


class TriangulatorTests(unittest.TestCase):
    def test_agreeing_sources_have_no_divergence(self):
        tri = Triangulator(0.5).triangulate(
            [_ok("a", price=95000), _ok("b", price=95050), _ok("c", price=94950)], "price"
        )
        self.assertEqual(tri.median_value, 95000)
        self.assertAlmostEqual(tri.divergence.max_divergence_pct, 100 / 95000 * 100, places=6)
        self.assertFalse(tri.divergence.has_divergence)
        self.assertEqual(tri.divergence.divergent_sources, ())
        self.assertEqual(tri.successful_sources, ["a", "b", "c"])

    def test_outlier_does_not_move_median(self):
        tri = Triangulator(0.5).triangulate(
            [_ok("a", price=100), _ok("b", price=101), _ok("c", price=500)], "price"
        )
        self.assertEqual(tri.median_value, 101)
        self.assertTrue(tri.divergence.has_divergence)
        self.assertIn("c", tri.divergence.divergent_sources)
        self.assertNotIn("b", tri.divergence.divergent_sources)

    def test_failed_and_missing_readings_are_recorded_as_none(self):
        readings = [
            _ok("a", price=10.0),
            SourceReading.failed("b", "HTTP 500"),
            _ok("c", volume_24h=5.0),
        ]
        tri = Triangulator(0.5).triangulate(readings, "price")
        self.assertEqual(tri.per_source_values, {"a": 10.0, "b": None, "c": None})
        self.assertEqual(tri.median_value, 10.0)
        self.assertEqual(tri.divergence.max_divergence_pct, 0.0)

    def test_no_usable_reading_means_no_consensus(self):
        tri = Triangulator(0.5).triangulate([SourceReading.failed("a", "down")], "price")
        self.assertFalse(tri.has_consensus)
        self.assertIsNone(tri.median_value)
        self.assertIsNone(tri.to_dict()["medianValue"])

    def test_non_finite_values_are_ignored(self):
        tri = Triangulator(0.5).triangulate([_ok("a", price=float("nan")), _ok("b", price=3.0)], "price")
        self.assertEqual(tri.median_value, 3.0)
        self.assertIsNone(tri.per_source_values["a"])

    def test_zero_median_reports_infinite_divergence(self):
        self.assertTrue(math.isinf(relative_diff_pct(1.0, -1.0, 0.0)))
        self.assertEqual(relative_diff_pct(0.0, 0.0, 0.0), 0.0)
        tri = Triangulator(0.5).triangulate([_ok("a", x=-1.0), _ok("b", x=1.0)], "x")
        self.assertIsNone(tri.to_dict()["divergence"]["maxDivergencePct"])

    def test_single_value_has_zero_divergence(self):
        self.assertEqual(max_pairwise_divergence_pct([42.0], 42.0), 0.0)

    def test_negative_tolerance_rejected(self):
        with self.assertRaises(ValueError):
            Triangulator(-1)


if __name__ == "__main__":
    unittest.main()
