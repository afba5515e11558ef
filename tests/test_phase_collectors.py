import asyncio
import unittest

from intel_fakes import FakeAdapter, FakeClock, T0, fast_settings, memory_session_factory, price_adapters
from schemas.market_intel import MarketDataPayload, NewsPayload, OnChainPayload, SentimentPayload, TechnicalPayload
from services.market_intel.alert_store import AlertStore
from services.market_intel.cache_store import AnalysisCache
from services.market_intel.errors import NoDataAvailable
from services.market_intel.phase_collectors import (
    MarketDataCollector,
    NewsCollector,
    OnChainCollector,
    SentimentCollector,
    TechnicalCollector,
    build_collectors,
    sentiment_label,
)
from services.market_intel.types import JobPhase


class PhaseCollectorTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.settings = fast_settings()
        self.cache = AnalysisCache(memory_session_factory(), clock=self.clock)

    def _collect(self, collector, symbol="BTC"):
        return asyncio.run(collector.collect(symbol, now=T0))

    def test_market_data_triangulates_and_caches(self):
        collector = MarketDataCollector(
            price_adapters(95000, 95050, 94950), settings=self.settings, cache=self.cache
        )
        outcome = self._collect(collector)

        self.assertEqual(outcome.quality, 100)
        self.assertIsInstance(outcome.payload, MarketDataPayload)
        self.assertEqual(outcome.payload.price, 95000)
        self.assertEqual(len(outcome.payload.sources), 3)

        cached = self.cache.get("BTC", "market-data")
        self.assertEqual(cached.quality_score, 100)
        acc = outcome.to_accumulator()
        self.assertEqual(acc["quality"], 100)
        self.assertEqual(acc["payload"]["kind"], "market-data")
        self.assertIsNone(acc["fallbackTier"])

    def test_market_data_with_two_failures_scores_below_floor(self):
        collector = MarketDataCollector(price_adapters(95000, failed=2), settings=self.settings, cache=self.cache)
        outcome = self._collect(collector)
        self.assertLess(outcome.quality, self.settings.quality_floor)

    def test_zero_price_is_fatal(self):
        collector = MarketDataCollector(price_adapters(0.0, 0.0), settings=self.settings, cache=self.cache)
        outcome = self._collect(collector)
        self.assertEqual(outcome.quality, 0)
        self.assertFalse(outcome.sanity.passed)

    def test_price_jump_against_cache_is_a_warning(self):
        self.cache.set("BTC", "market-data", MarketDataPayload(symbol="BTC", price=100.0), 300, 100)

        collector = MarketDataCollector(price_adapters(1000.0, 1000.0), settings=self.settings, cache=self.cache)
        outcome = self._collect(collector)
        self.assertFalse(outcome.sanity.checks["within_ratio_of_previous"])
        self.assertEqual(outcome.quality, 90)

    def test_no_provider_succeeds(self):
        collector = MarketDataCollector(price_adapters(failed=3), settings=self.settings, cache=self.cache)
        with self.assertRaises(NoDataAvailable):
            self._collect(collector)
        self.assertIsNone(self.cache.get("BTC", "market-data"))

    def test_sentiment(self):
        adapters = [
            FakeAdapter("community", 1, {"sentiment_score": 70.0, "community_up_pct": 70.0}),
            FakeAdapter("fng", 2, {"sentiment_score": 70.2, "fear_greed_index": 70.2}),
        ]
        outcome = self._collect(SentimentCollector(adapters, settings=self.settings, cache=self.cache))
        self.assertIsInstance(outcome.payload, SentimentPayload)
        self.assertEqual(outcome.payload.label, "greed")
        self.assertEqual(outcome.payload.fear_greed_index, 70.2)

    def test_technical_uses_cascade_and_indicators(self):
        closes = [100.0 + i for i in range(60)]
        primary = FakeAdapter("ohlc", 1, error="HTTP 502")
        backup = FakeAdapter(
            "chart", 2, {"last_close": closes[-1], "candle_count": 60.0}, extras={"closes": closes}
        )
        outcome = self._collect(TechnicalCollector([primary, backup], settings=self.settings, cache=self.cache))

        self.assertIsInstance(outcome.payload, TechnicalPayload)
        self.assertEqual(outcome.fallback_tier, 2)
        self.assertEqual(outcome.payload.trend, "bullish")
        self.assertEqual(outcome.payload.candle_count, 60)
        # cascade: one of two sources failed
        self.assertLess(outcome.quality, 100)

    def test_onchain_zero_mempool_invalidates_dataset(self):
        adapters = [FakeAdapter("mempool", 1, {"mempool_tx_count": 0.0, "hashrate": 5.0e20})]
        outcome = self._collect(OnChainCollector(adapters, settings=self.settings, cache=self.cache))
        self.assertIsInstance(outcome.payload, OnChainPayload)
        self.assertEqual(outcome.quality, 0)
        self.assertFalse(outcome.sanity.checks["mempool_non_zero"])

    def test_onchain_healthy(self):
        adapters = [FakeAdapter("mempool", 1, {"mempool_tx_count": 42000.0, "mempool_vbytes": 1.0})]
        outcome = self._collect(OnChainCollector(adapters, settings=self.settings, cache=self.cache))
        self.assertEqual(outcome.quality, 100)
        self.assertEqual(outcome.payload.metrics["mempool_tx_count"], 42000.0)

    def test_news(self):
        headlines = [{"title": "BTC rallies", "url": "https://x/1", "source": "x", "published_at": T0}]
        adapters = [FakeAdapter("news", 1, {"article_count": 1.0}, extras={"headlines": headlines, "data_timestamp": T0})]
        outcome = self._collect(NewsCollector(adapters, settings=self.settings, cache=self.cache))
        self.assertIsInstance(outcome.payload, NewsPayload)
        self.assertEqual(outcome.payload.article_count, 1)
        self.assertEqual(outcome.payload.headlines[0].title, "BTC rallies")

    def test_build_collectors_skips_phases_without_adapters(self):
        collectors = build_collectors(
            {"market-data": price_adapters(1.0), "news": []},
            settings=self.settings,
            cache=self.cache,
        )
        self.assertEqual(list(collectors), [JobPhase.MARKET_DATA])

    def test_unconfigured_provider_does_not_lower_quality(self):
        adapters = price_adapters(95000, 95050, 94950) + [FakeAdapter("coinmarketcap", 1, unsupported=True)]
        outcome = self._collect(MarketDataCollector(adapters, settings=self.settings, cache=self.cache))
        self.assertEqual(outcome.quality, 100)
        self.assertEqual(outcome.to_accumulator()["sources"][-1]["status"], "unsupported")

    def test_fatal_discrepancy_is_queued_for_review(self):
        alerts = AlertStore(memory_session_factory(), clock=self.clock)
        collector = MarketDataCollector(
            price_adapters(0.0, 0.0), settings=self.settings, cache=self.cache, alerts=alerts
        )
        asyncio.run(collector.collect("BTC", now=T0, job_id="job-1"))

        pending = alerts.pending()
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0]["severity"], "fatal")
        self.assertEqual(pending[0]["alert_type"], "zero_value")
        self.assertEqual(pending[0]["data_type"], "market-data")
        self.assertEqual(pending[0]["job_id"], "job-1")
        self.assertEqual(pending[0]["details"]["affected_sources"], ["src0", "src1"])

    def test_clean_dataset_raises_no_alert(self):
        alerts = AlertStore(memory_session_factory(), clock=self.clock)
        collector = MarketDataCollector(
            price_adapters(95000, 95050, 94950), settings=self.settings, cache=self.cache, alerts=alerts
        )
        self._collect(collector)
        self.assertEqual(alerts.statistics()["total"], 0)

    def test_sentiment_labels(self):
        self.assertEqual(sentiment_label(10), "extreme fear")
        self.assertEqual(sentiment_label(50), "neutral")
        self.assertEqual(sentiment_label(90), "extreme greed")


if __name__ == "__main__":
    unittest.main()
