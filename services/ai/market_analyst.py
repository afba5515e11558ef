# services/ai/market_analyst.py
"""LLM-backed verdict over the triangulated phase results of one job."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from services.ai.llm_service import LLMService, get_llm_service
from services.market_intel.errors import AnalysisUnavailable
from services.market_intel.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    BULLISH = "Bullish"
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"


class Confidence(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


@dataclass
class MarketIntelReport:
    symbol: str
    summary: str
    verdict: Verdict
    confidence: Confidence
    key_points: List[str] = field(default_factory=list)
    risks: List[str] = field(default_factory=list)
    data_notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "summary": self.summary,
            "verdict": self.verdict.value,
            "confidence": self.confidence.value,
            "keyPoints": self.key_points,
            "risks": self.risks,
            "dataNotes": self.data_notes,
        }


# ============================================================================
# PROMPTS
# ============================================================================

SYSTEM_PROMPT = """You are a professional crypto market analyst.
You receive data that has already been cross-checked across several providers,
with a 0-100 quality score per dataset. Weigh low-quality datasets accordingly
and never invent numbers that are not in the data.

Return ONLY JSON. No markdown. No extra text.
"""

REPORT_PROMPT = """Analyze {symbol} using the following validated datasets.

{context}

Respond with a JSON object matching this schema:
{{
    "summary": "2-3 sentence assessment",
    "verdict": "Bullish" | "Bearish" | "Neutral",
    "confidence": "High" | "Medium" | "Low",
    "keyPoints": ["point 1", "point 2", "point 3"],
    "risks": ["risk 1", "risk 2"],
    "dataNotes": ["which datasets were missing or degraded"]
}}
"""


def _safe_enum(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def render_context(context: Dict[str, Any]) -> str:
    """Compact per-phase view; source lists and sanity detail are dropped."""
    lines = [f"Overall data quality: {context.get('data_quality')}/100"]
    for phase, result in (context.get("phases") or {}).items():
        if not result:
            lines.append(f"- {phase}: unavailable")
            continue
        payload = dict(result.get("payload") or {})
        for noisy in ("sources", "triangulation", "sanity", "kind", "symbol"):
            payload.pop(noisy, None)
        lines.append(f"- {phase} (quality {result.get('quality')}): {json.dumps(payload, default=str)}")

    summary = context.get("quality_summary") or {}
    if summary:
        lines.append(
            f"Reliability: {summary.get('reliability')}, confidence: {summary.get('confidence')}, "
            f"fatal issues: {summary.get('fatal_count', 0)}, warnings: {summary.get('warning_count', 0)}"
        )
        for rec in summary.get("recommendations") or []:
            lines.append(f"  * [{rec.get('priority')}] {rec.get('title')}: {rec.get('description')}")
    return "\n".join(lines)


class LLMAnalyst:
    def __init__(
        self,
        llm_factory: Callable[[], LLMService] = get_llm_service,
        *,
        retry: Optional[RetryPolicy] = None,
    ):
        self._llm_factory = llm_factory
        self._retry = (retry or RetryPolicy.immediate(2)).with_retry_on(
            httpx.HTTPError, json.JSONDecodeError
        )

    async def analyze(self, context: Dict[str, Any]) -> Dict[str, Any]:
        symbol = str(context.get("symbol") or "").upper()
        try:
            llm = self._llm_factory()
        except ValueError as e:
            # missing provider credentials
            raise AnalysisUnavailable(f"AI analysis unavailable: {e}") from e

        prompt = REPORT_PROMPT.format(symbol=symbol, context=render_context(context))
        try:
            data = await self._retry.acall(llm.generate_json, system=SYSTEM_PROMPT, user=prompt)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error("ai_analysis_failed symbol=%s err=%s", symbol, e, extra={"symbol": symbol})
            raise AnalysisUnavailable(f"AI analysis failed: {e}") from e

        report = MarketIntelReport(
            symbol=symbol,
            summary=str(data.get("summary") or ""),
            verdict=_safe_enum(Verdict, data.get("verdict"), Verdict.NEUTRAL),
            confidence=_safe_enum(Confidence, data.get("confidence"), Confidence.LOW),
            key_points=_str_list(data.get("keyPoints")),
            risks=_str_list(data.get("risks")),
            data_notes=_str_list(data.get("dataNotes")),
        )
        return report.to_dict()
