import unittest

from services.market_intel.quality_summary import build_quality_summary, confidence_level, reliability_grade


def _phase(quality, discrepancies=(), checks=None, sources=None):
    return {
        "quality": quality,
        "payload": {
            "sanity": {
                "passed": not any(d["severity"] == "fatal" for d in discrepancies),
                "checks": checks or {"consensus_present": True},
                "discrepancies": list(discrepancies),
            },
        },
        "sources": sources or [{"source": "a", "status": "success", "tier": 1, "latencyMs": 5, "error": None}],
        "fallbackTier": None,
    }


def _disc(kind, severity, sources, description="issue"):
    return {
        "type": kind,
        "severity": severity,
        "description": description,
        "affected_sources": list(sources),
        "impact": "",
    }


class QualitySummaryTests(unittest.TestCase):
    def test_clean_full_dataset(self):
        acc = {p: _phase(100) for p in ("market-data", "sentiment", "technical", "on-chain", "news")}
        summary = build_quality_summary(acc, 100, 70)

        self.assertEqual(summary["reliability"], "excellent")
        self.assertEqual(summary["confidence"], "high")
        self.assertTrue(summary["can_proceed"])
        self.assertEqual(summary["discrepancies_by_type"], {})
        self.assertEqual(summary["unavailable"], [])
        self.assertEqual(summary["passed_checks"], ["consensus_present"])
        self.assertEqual(summary["recommendations"], [])

    def test_discrepancies_are_grouped_by_data_type(self):
        divergence = _disc("source_divergence", "warning", ["coinbase"], "price diverges 1.2%")
        empty_mempool = _disc("zero_value", "fatal", ["mempool"], "mempool_tx_count reported exactly zero")
        acc = {
            "market-data": _phase(91, [divergence], {"consensus_present": True, "divergence": False}),
            "sentiment": None,
            "technical": _phase(100),
            "on-chain": _phase(0, [empty_mempool], {"mempool_non_zero": False}),
            "news": None,
        }
        summary = build_quality_summary(acc, 62, 70)

        self.assertEqual(summary["discrepancies_by_type"], {
            "market-data": [divergence],
            "on-chain": [empty_mempool],
        })
        self.assertEqual(summary["by_data_type"]["on-chain"], 0)
        self.assertEqual(summary["unavailable"], ["sentiment", "news"])
        self.assertEqual(summary["fatal_count"], 1)
        self.assertEqual(summary["warning_count"], 1)
        self.assertEqual(summary["failed_checks"], ["divergence", "mempool_non_zero"])
        self.assertEqual(summary["reliability"], "fair")
        self.assertEqual(summary["confidence"], "low")
        self.assertFalse(summary["can_proceed"])

        priorities = [r["priority"] for r in summary["recommendations"]]
        self.assertEqual(priorities, sorted(priorities, key=["high", "medium", "low"].index))
        titles = [r["title"] for r in summary["recommendations"]]
        self.assertEqual(titles[:2], ["Critical data quality issues detected", "Data quality below the analysis floor"])
        self.assertIn("Price discrepancy across sources", titles)
        self.assertIn("Multiple source reliability issues", titles)
        critical = summary["recommendations"][0]
        self.assertEqual(critical["affected_sources"], ["mempool"])

    def test_incomplete_coverage(self):
        acc = {"market-data": _phase(100), "sentiment": None}
        summary = build_quality_summary(acc, 100, 70)
        self.assertTrue(summary["can_proceed"])
        self.assertEqual([r["title"] for r in summary["recommendations"]], ["Incomplete data coverage"])

    def test_failed_sources_count_as_unreliable(self):
        sources = [
            {"source": "a", "status": "success", "tier": 1, "latencyMs": 5, "error": None},
            {"source": "b", "status": "failed", "tier": 1, "latencyMs": 5, "error": "HTTP 503"},
            {"source": "c", "status": "timeout", "tier": 2, "latencyMs": 8000, "error": "timeout"},
            {"source": "d", "status": "unsupported", "tier": 1, "latencyMs": 0, "error": "no key"},
        ]
        acc = {p: _phase(90, sources=sources) for p in ("market-data", "sentiment", "technical")}
        summary = build_quality_summary(acc, 90, 70)
        [rec] = [r for r in summary["recommendations"] if r["category"] == "source_reliability"]
        self.assertEqual(rec["affected_sources"], ["b", "c"])

    def test_grades(self):
        self.assertEqual(reliability_grade(90), "excellent")
        self.assertEqual(reliability_grade(75), "good")
        self.assertEqual(reliability_grade(60), "fair")
        self.assertEqual(reliability_grade(40), "poor")
        self.assertEqual(reliability_grade(39), "critical")
        self.assertEqual(confidence_level(85, 0), "high")
        self.assertEqual(confidence_level(95, 1), "low")
        self.assertEqual(confidence_level(70, 0), "medium")
        self.assertEqual(confidence_level(49, 0), "very_low")


if __name__ == "__main__":
    unittest.main()
