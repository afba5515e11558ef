import unittest
from unittest.mock import patch

from intel_fakes import FakeAnalyst, FakeClock, fast_settings, memory_session_factory, price_adapters

from fastapi.testclient import TestClient

from main import app
from schemas.market_intel import MarketDataPayload
from services.market_intel.factory import build_orchestrator, get_orchestrator
from services.market_intel.types import Discrepancy, DiscrepancyType, Severity


class IntelRoutesTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.orch = build_orchestrator(
            memory_session_factory(),
            settings=fast_settings(),
            adapters={"market-data": price_adapters(95000, 95050, 94950)},
            analyst=FakeAnalyst(),
            clock=self.clock,
        )
        app.dependency_overrides[get_orchestrator] = lambda: self.orch
        settings_patch = patch("routers.cron_routes.get_settings", return_value=fast_settings())
        settings_patch.start()
        self.addCleanup(settings_patch.stop)
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def test_health(self):
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"status": "ok"})
        self.assertTrue(res.headers.get("X-Request-ID"))

        echoed = self.client.get("/health", headers={"X-Request-ID": "poll-42"})
        self.assertEqual(echoed.headers["X-Request-ID"], "poll-42")

    def test_start_job_and_poll(self):
        res = self.client.post("/api/intel/jobs/btc")
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["symbol"], "BTC")
        self.assertEqual(body["status"], "queued")
        self.assertEqual(body["phase"], "init")

        again = self.client.post("/api/intel/jobs/BTC").json()
        self.assertEqual(again["job_id"], body["job_id"])

        polled = self.client.get(f"/api/intel/jobs/{body['job_id']}")
        self.assertEqual(polled.status_code, 200)
        self.assertEqual(polled.json()["progress"], 0)

    def test_invalid_symbol(self):
        res = self.client.post("/api/intel/jobs/not!valid")
        self.assertEqual(res.status_code, 422)

    def test_unknown_job(self):
        self.assertEqual(self.client.get("/api/intel/jobs/does-not-exist").status_code, 404)

    def test_cached_data(self):
        self.assertEqual(self.client.get("/api/intel/cache/BTC/market-data").status_code, 404)
        self.assertEqual(self.client.get("/api/intel/cache/BTC/bogus").status_code, 400)

        self.orch.cache.set("BTC", "market-data", MarketDataPayload(symbol="BTC", price=95000.0), 300, 100)
        res = self.client.get("/api/intel/cache/btc/market-data")
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["quality_score"], 100)
        self.assertEqual(body["payload"]["price"], 95000.0)

        stats = self.client.get("/api/intel/cache-stats", params={"symbol": "BTC"}).json()
        self.assertEqual(stats["live_entries"], 1)

    def test_cron_tick_advances_job(self):
        job = self.client.post("/api/intel/jobs/BTC").json()
        res = self.client.post("/api/cron/process-jobs")
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertTrue(body["claimed"])
        self.assertEqual(body["job_id"], job["job_id"])
        self.assertEqual(body["phase"], "sentiment")

        second = self.client.post("/api/cron/process-jobs").json()
        self.assertEqual(second["phase"], "technical")

    def test_cron_idle(self):
        body = self.client.post("/api/cron/process-jobs").json()
        self.assertEqual(body, {
            "reclaimed": 0, "claimed": False, "job_id": None, "phase": None, "status": None, "progress": None,
        })

    def test_cron_secret_required_when_configured(self):
        with patch("routers.cron_routes.get_settings", return_value=fast_settings(cron_secret="s3cret")):
            self.assertEqual(self.client.post("/api/cron/sweep-cache").status_code, 401)
            wrong = self.client.post("/api/cron/sweep-cache", headers={"Authorization": "Bearer nope"})
            self.assertEqual(wrong.status_code, 401)
            ok = self.client.post("/api/cron/sweep-cache", headers={"Authorization": "Bearer s3cret"})
            self.assertEqual(ok.status_code, 200)
            self.assertEqual(ok.json(), {"deleted": 0})

    def test_completed_job_exposes_quality_summary(self):
        job = self.client.post("/api/intel/jobs/BTC").json()
        for _ in range(6):
            self.client.post("/api/cron/process-jobs")

        body = self.client.get(f"/api/intel/jobs/{job['job_id']}").json()
        self.assertEqual(body["status"], "completed")
        self.assertEqual(body["quality_summary"]["reliability"], "excellent")
        self.assertEqual(body["quality_summary"]["by_data_type"]["market-data"], 100)

    def test_alert_review_queue(self):
        self.orch.alerts.record_discrepancies("BTC", "on-chain", [
            Discrepancy(
                type=DiscrepancyType.ZERO_VALUE,
                severity=Severity.FATAL,
                description="mempool_tx_count reported exactly zero",
                affected_sources=("mempool",),
            ),
        ])

        pending = self.client.get("/api/admin/alerts")
        self.assertEqual(pending.status_code, 200)
        [alert] = pending.json()
        self.assertEqual(alert["severity"], "fatal")
        self.assertEqual(alert["details"]["affected_sources"], ["mempool"])

        stats = self.client.get("/api/admin/alerts/stats").json()
        self.assertEqual(stats["pending"], 1)
        self.assertEqual(stats["by_type"], {"zero_value": 1})

        reviewed = self.client.post(
            f"/api/admin/alerts/{alert['id']}/review", json={"reviewed_by": "ops", "notes": "provider outage"}
        )
        self.assertEqual(reviewed.status_code, 200)
        self.assertTrue(reviewed.json()["reviewed"])
        self.assertEqual(self.client.get("/api/admin/alerts").json(), [])
        everything = self.client.get("/api/admin/alerts", params={"pending_only": "false"}).json()
        self.assertEqual(len(everything), 1)

        self.assertEqual(
            self.client.post("/api/admin/alerts/999/review", json={"reviewed_by": "ops"}).status_code, 404
        )
        self.assertEqual(self.client.post(f"/api/admin/alerts/{alert['id']}/review", json={}).status_code, 422)

    def test_alert_queue_needs_cron_secret_when_configured(self):
        with patch("routers.cron_routes.get_settings", return_value=fast_settings(cron_secret="s3cret")):
            self.assertEqual(self.client.get("/api/admin/alerts").status_code, 401)
            ok = self.client.get("/api/admin/alerts/stats", headers={"Authorization": "Bearer s3cret"})
            self.assertEqual(ok.status_code, 200)
            self.assertEqual(ok.json()["total"], 0)


if __name__ == "__main__":
    unittest.main()
