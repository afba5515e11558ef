import unittest

from services.market_intel.technicals import (
    build_indicators,
    classify_trend,
    max_drawdown,
    realized_vol_annualized,
    rolling_mean,
    rsi,
)


class TechnicalsTests(unittest.TestCase):
    def test_rolling_mean(self):
        self.assertEqual(rolling_mean([1, 2, 3, 4], 2), 3.5)
        self.assertIsNone(rolling_mean([1, 2], 3))

    def test_rsi_extremes(self):
        rising = [float(i) for i in range(1, 40)]
        falling = list(reversed(rising))
        flat = [5.0] * 30
        self.assertEqual(rsi(rising), 100.0)
        self.assertLess(rsi(falling), 1.0)
        self.assertEqual(rsi(flat), 50.0)
        self.assertIsNone(rsi([1.0] * 10))

    def test_rsi_stays_in_range(self):
        closes = [100 + ((-1) ** i) * (i % 7) for i in range(60)]
        value = rsi(closes)
        self.assertGreaterEqual(value, 0.0)
        self.assertLessEqual(value, 100.0)

    def test_max_drawdown(self):
        self.assertAlmostEqual(max_drawdown([100, 120, 90, 110], 4), 90 / 120 - 1)
        self.assertEqual(max_drawdown([1, 2, 3], 3), 0.0)

    def test_volatility_needs_enough_history(self):
        self.assertIsNone(realized_vol_annualized([1.0] * 10))
        self.assertEqual(realized_vol_annualized([1.0] * 30), 0.0)

    def test_trend(self):
        self.assertEqual(classify_trend(110, 105, 100), "bullish")
        self.assertEqual(classify_trend(90, 95, 100), "bearish")
        self.assertEqual(classify_trend(100, 105, 95), "neutral")
        self.assertEqual(classify_trend(100, None, None), "unknown")

    def test_build_indicators(self):
        closes = [100.0 + i for i in range(60)]
        ind = build_indicators(closes)
        self.assertEqual(ind["last_close"], 159.0)
        self.assertEqual(ind["candle_count"], 60)
        self.assertEqual(ind["trend"], "bullish")
        self.assertIsNotNone(ind["sma50"])
        self.assertEqual(ind["max_drawdown"], 0.0)


if __name__ == "__main__":
    unittest.main()
