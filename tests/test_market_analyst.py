import asyncio
import json
import unittest

import httpx

from services.ai.llm_service import AnthropicClient, LLMConfig, LLMService, OpenAIClient
from services.ai.market_analyst import LLMAnalyst, render_context
from services.market_intel.analyst import AIAnalyst
from services.market_intel.errors import AnalysisUnavailable
from services.market_intel.retry_policy import RetryPolicy

CONTEXT = {
    "symbol": "btc",
    "data_quality": 88,
    "phases": {
        "market-data": {
            "quality": 100,
            "payload": {"kind": "market-data", "symbol": "BTC", "price": 95000.0, "sources": [{"source": "a"}]},
            "sources": [],
        },
        "sentiment": None,
    },
}


class _RawClient:
    def __init__(self, responses):
        self.responses = list(responses)
        self.prompts = []

    async def generate_json(self, *, system: str, user: str) -> str:
        self.prompts.append(user)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _service(*responses):
    client = _RawClient(responses)
    return LLMService(cfg=LLMConfig(provider="openai", api_key="test"), client=client), client


class LLMAnalystTests(unittest.TestCase):
    def test_report_is_normalised(self):
        service, client = _service(json.dumps({
            "summary": "Steady bid.",
            "verdict": "Bullish",
            "confidence": "sky-high",
            "keyPoints": ["price holding", None],
            "risks": "not a list",
        }))
        analyst = LLMAnalyst(lambda: service, retry=RetryPolicy.immediate(2))
        report = asyncio.run(analyst.analyze(CONTEXT))

        self.assertEqual(report["symbol"], "BTC")
        self.assertEqual(report["verdict"], "Bullish")
        self.assertEqual(report["confidence"], "Low")
        self.assertEqual(report["keyPoints"], ["price holding"])
        self.assertEqual(report["risks"], [])
        self.assertIn("market-data (quality 100)", client.prompts[0])

    def test_fenced_json_is_accepted(self):
        service, _ = _service('```json\n{"summary": "x", "verdict": "Bearish", "confidence": "High"}\n```')
        report = asyncio.run(LLMAnalyst(lambda: service).analyze(CONTEXT))
        self.assertEqual(report["verdict"], "Bearish")

    def test_transient_failure_is_retried(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        service, _ = _service(
            httpx.ConnectError("reset", request=request),
            json.dumps({"summary": "ok", "verdict": "Neutral", "confidence": "Medium"}),
        )
        report = asyncio.run(LLMAnalyst(lambda: service, retry=RetryPolicy.immediate(2)).analyze(CONTEXT))
        self.assertEqual(report["confidence"], "Medium")

    def test_garbage_raises_analysis_unavailable(self):
        service, _ = _service("not json", "still not json")
        with self.assertRaises(AnalysisUnavailable):
            asyncio.run(LLMAnalyst(lambda: service, retry=RetryPolicy.immediate(2)).analyze(CONTEXT))

    def test_missing_credentials_raise_analysis_unavailable(self):
        def factory():
            return LLMService(cfg=LLMConfig(provider="openai", api_key=""))

        with self.assertRaises(AnalysisUnavailable) as ctx:
            asyncio.run(LLMAnalyst(factory).analyze(CONTEXT))
        self.assertIn("OPENAI_API_KEY", str(ctx.exception))

    def test_unknown_provider_rejected(self):
        with self.assertRaises(ValueError):
            LLMService(cfg=LLMConfig(provider="nope"))

    def test_provider_request_shapes(self):
        openai = OpenAIClient(LLMConfig(provider="openai", api_key="k"))
        self.assertEqual(openai.model, "gpt-4o-mini")
        self.assertEqual(openai.body("s", "u")["response_format"], {"type": "json_object"})
        self.assertEqual(openai.extract({"choices": [{"message": {"content": "{}"}}]}), "{}")

        anthropic = AnthropicClient(LLMConfig(provider="anthropic", api_key="k", model="m"))
        self.assertEqual(anthropic.body("s", "u")["system"], "s")
        self.assertEqual(
            anthropic.extract({"content": [{"type": "text", "text": '{"a"'}, {"type": "text", "text": ": 1}"}]}),
            '{"a": 1}',
        )

    def test_render_context_drops_noise(self):
        text = render_context(CONTEXT)
        self.assertIn("Overall data quality: 88/100", text)
        self.assertIn("- sentiment: unavailable", text)
        self.assertNotIn('"sources"', text)
        self.assertNotIn("Reliability", text)

    def test_render_context_includes_quality_summary(self):
        summary = {
            "reliability": "good",
            "confidence": "medium",
            "fatal_count": 0,
            "warning_count": 1,
            "recommendations": [{
                "priority": "medium",
                "title": "Incomplete data coverage",
                "description": "Only 2 of 5 data types available.",
            }],
        }
        text = render_context({**CONTEXT, "quality_summary": summary})
        self.assertIn("Reliability: good, confidence: medium", text)
        self.assertIn("[medium] Incomplete data coverage: Only 2 of 5 data types available.", text)

    def test_satisfies_protocol(self):
        self.assertIsInstance(LLMAnalyst(), AIAnalyst)


if __name__ == "__main__":
    unittest.main()
