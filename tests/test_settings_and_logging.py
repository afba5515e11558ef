import json
import logging
import os
import unittest
from unittest.mock import patch

from config.logging_config import JsonFormatter
from config.settings import IntelSettings
from services.market_intel.types import JobPhase, next_phase, progress_after


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        s = IntelSettings()
        self.assertEqual(s.quality_floor, 70)
        self.assertEqual(s.divergence_tolerance_pct, 0.5)
        self.assertEqual(s.ttl_for("market-data"), 300)
        self.assertEqual(s.ttl_for("unknown"), 300)
        self.assertLess(s.phase_deadline_s, 60)

    def test_from_env_overrides(self):
        env = {
            "QUALITY_FLOOR": "80",
            "DIVERGENCE_TOLERANCE_PCT": "1.5",
            "CACHE_TTL_ON_CHAIN_SEC": "120",
            "JOB_REQUIRED_PHASES": "market-data, technical",
            "CRON_SECRET": "abc",
            "ALERT_WARNINGS": "true",
        }
        with patch.dict(os.environ, env):
            s = IntelSettings.from_env()
        self.assertEqual(s.quality_floor, 80)
        self.assertEqual(s.divergence_tolerance_pct, 1.5)
        self.assertEqual(s.ttl_for("on-chain"), 120)
        self.assertEqual(s.required_phases, ("market-data", "technical"))
        self.assertEqual(s.cron_secret, "abc")
        self.assertTrue(s.alert_warnings)
        self.assertFalse(IntelSettings().alert_warnings)


class PhaseOrderTests(unittest.TestCase):
    def test_order_and_progress(self):
        self.assertEqual(next_phase(JobPhase.INIT), JobPhase.MARKET_DATA)
        self.assertEqual(next_phase(JobPhase.NEWS), JobPhase.AI_ANALYSIS)
        self.assertEqual(next_phase(JobPhase.DONE), JobPhase.DONE)
        self.assertEqual(progress_after(JobPhase.INIT), 0)
        self.assertEqual(progress_after(JobPhase.AI_ANALYSIS), 100)
        self.assertEqual(progress_after(JobPhase.DONE), 100)


class JsonFormatterTests(unittest.TestCase):
    def test_context_fields_are_included(self):
        record = logging.LogRecord("svc", logging.INFO, __file__, 1, "job_created job_id=%s", ("j1",), None)
        record.job_id = "j1"
        record.phase = "market-data"
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["message"], "job_created job_id=j1")
        self.assertEqual(payload["job_id"], "j1")
        self.assertEqual(payload["phase"], "market-data")
        self.assertNotIn("symbol", payload)


if __name__ == "__main__":
    unittest.main()
