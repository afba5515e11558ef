# services/market_intel/phase_collectors.py
"""
One collector per data phase.

A collector runs the full purity pipeline for its data type:

    adapters -> (cascade | fetch-all) -> Triangulator -> SanityChecker
             -> QualityScorer -> payload -> AnalysisCache.set()

and returns what the job keeps in its result accumulator. Collectors are
idempotent: re-running a phase just overwrites the cache row. Discrepancies
the sanity checks raise are also handed to the AlertStore.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from config.settings import IntelSettings
from schemas.market_intel import (
    Headline,
    MarketDataPayload,
    NewsPayload,
    OnChainPayload,
    SentimentPayload,
    TechnicalPayload,
    dump_payload,
)
from services.sources.base import SourceAdapter

from .alert_store import AlertStore
from .cache_store import AnalysisCache, CacheEntry
from .errors import NoDataAvailable
from .fallback_cascade import FallbackCascade
from .quality_scorer import QualityScorer
from .sanity_checker import (
    SanityCheck,
    SanityChecker,
    SanityContext,
    consensus_present,
    fresh_within,
    metric_non_zero,
    value_in_range,
    within_ratio_of_previous,
)
from .source_health import SourceHealthTracker
from .technicals import build_indicators
from .triangulator import Triangulator
from .types import (
    JobPhase,
    SanityCheckResult,
    Severity,
    SourceOutcome,
    SourceReading,
    TriangulationResult,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

TRIANGULATE = "triangulate"
CASCADE = "cascade"


@dataclass(frozen=True)
class PhaseOutcome:
    data_type: str
    quality: int
    payload: BaseModel
    readings: Sequence[SourceReading]
    triangulation: TriangulationResult
    sanity: SanityCheckResult
    fallback_tier: Optional[int] = None
    cache_entry: Optional[CacheEntry] = None

    def to_accumulator(self) -> Dict[str, Any]:
        return {
            "quality": self.quality,
            "payload": dump_payload(self.payload),
            "sources": [r.to_summary() for r in self.readings],
            "fallbackTier": self.fallback_tier,
        }


@dataclass
class _Collected:
    readings: List[SourceReading]
    winner: Optional[SourceReading] = None
    fallback_tier: Optional[int] = None
    aux: Dict[str, float] = field(default_factory=dict)


class PhaseCollector:
    data_type: str = ""
    mode: str = TRIANGULATE
    metric: str = ""

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        *,
        settings: IntelSettings,
        cache: AnalysisCache,
        health: Optional[SourceHealthTracker] = None,
        alerts: Optional[AlertStore] = None,
    ):
        self.settings = settings
        self.cache = cache
        self.alerts = alerts
        self.cascade = FallbackCascade(
            adapters,
            attempt_timeout_s=settings.adapter_timeout_s,
            deadline_s=settings.fetch_deadline_s,
            health=health,
        )
        self.triangulator = Triangulator(settings.divergence_tolerance_pct)
        self.scorer = QualityScorer(settings.quality_weights, settings.divergence_tolerance_pct)

    # ── hooks ───────────────────────────────────────────────────────

    def checks(self) -> List[SanityCheck]:
        return [consensus_present()]

    def derive(self, collected: _Collected) -> Dict[str, float]:
        """Extra aux metrics computed from the raw readings."""
        return {}

    def previous_value(self, payload: BaseModel) -> Optional[float]:
        return None

    def build_payload(
        self,
        symbol: str,
        tri: TriangulationResult,
        sanity: SanityCheckResult,
        collected: _Collected,
    ) -> BaseModel:
        raise NotImplementedError

    # ── pipeline ────────────────────────────────────────────────────

    async def _fetch(self, symbol: str) -> _Collected:
        if self.mode == CASCADE:
            result = await self.cascade.fetch_first(symbol, self.data_type, metric=self.metric)
            return _Collected(
                readings=result.readings,
                winner=result.reading,
                fallback_tier=result.tier,
            )

        readings = await self.cascade.fetch_all(symbol, metric=self.metric)
        ok = [r for r in readings if r.ok]
        if not ok:
            last = next((r.error for r in reversed(readings) if r.error), None)
            raise NoDataAvailable(self.data_type, [r.source_name for r in readings], last)
        return _Collected(readings=readings, winner=ok[0])

    @staticmethod
    def _merge_aux(readings: Sequence[SourceReading]) -> Dict[str, float]:
        aux: Dict[str, float] = {}
        for r in readings:
            if not r.ok:
                continue
            for key in r.metrics:
                v = r.value(key)
                if v is not None:
                    aux.setdefault(key, v)
        return aux

    @staticmethod
    def _data_timestamp(readings: Sequence[SourceReading]) -> Optional[datetime]:
        stamps = [
            as_utc(r.extras["data_timestamp"])
            for r in readings
            if r.ok and isinstance(r.extras.get("data_timestamp"), datetime)
        ]
        return max(stamps) if stamps else None

    async def collect(
        self, symbol: str, *, now: Optional[datetime] = None, job_id: Optional[str] = None
    ) -> PhaseOutcome:
        now = now or utcnow()
        collected = await self._fetch(symbol)
        collected.aux = self._merge_aux(collected.readings)
        collected.aux.update(self.derive(collected))

        tri = self.triangulator.triangulate(collected.readings, self.metric, now=now)
        if not tri.has_consensus:
            raise NoDataAvailable(
                self.data_type,
                [r.source_name for r in collected.readings],
                f"no usable {self.metric}",
            )

        previous = self.cache.get(symbol, self.data_type)
        ctx = SanityContext(
            triangulation=tri,
            aux=collected.aux,
            data_timestamp=self._data_timestamp(collected.readings),
            previous_value=self.previous_value(previous.payload) if previous else None,
            now=now,
        )
        sanity = SanityChecker(self.checks()).run(ctx)
        if self.alerts is not None and sanity.discrepancies:
            self.alerts.record_discrepancies(symbol, self.data_type, sanity.discrepancies, job_id=job_id)
        quality = self.scorer.score(
            tri, sanity, [SourceOutcome.from_reading(r) for r in collected.readings]
        )

        payload = self.build_payload(symbol, tri, sanity, collected)
        entry = self.cache.set(symbol, self.data_type, payload, self.settings.ttl_for(self.data_type), quality)

        logger.info(
            "phase_collected data_type=%s symbol=%s quality=%d sources_ok=%d/%d",
            self.data_type, symbol, quality,
            sum(1 for r in collected.readings if r.ok), len(collected.readings),
            extra={"symbol": symbol, "data_type": self.data_type},
        )
        return PhaseOutcome(
            data_type=self.data_type,
            quality=quality,
            payload=entry.payload,
            readings=tuple(collected.readings),
            triangulation=tri,
            sanity=sanity,
            fallback_tier=collected.fallback_tier,
            cache_entry=entry,
        )

    def _common(self, symbol: str, tri: TriangulationResult, sanity: SanityCheckResult, collected: _Collected) -> Dict[str, Any]:
        return {
            "symbol": symbol,
            "sources": [r.to_summary() for r in collected.readings],
            "fallback_tier": collected.fallback_tier,
            "triangulation": tri.to_dict(),
            "sanity": sanity.to_dict(),
        }


# ============================================================================
# COLLECTORS
# ============================================================================

class MarketDataCollector(PhaseCollector):
    data_type = JobPhase.MARKET_DATA.value
    mode = TRIANGULATE
    metric = "price"

    def checks(self) -> List[SanityCheck]:
        return [
            consensus_present(),
            metric_non_zero("price", severity=Severity.FATAL, impact="A traded asset cannot be priced at zero"),
            metric_non_zero("volume_24h", impact="Zero volume suggests a stale or delisted market"),
            value_in_range("change_24h_pct", -99.0, 1000.0),
            within_ratio_of_previous(self.settings.max_jump_ratio),
            fresh_within(self.settings.freshness_window_s),
        ]

    def previous_value(self, payload: BaseModel) -> Optional[float]:
        return getattr(payload, "price", None)

    def build_payload(self, symbol, tri, sanity, collected) -> BaseModel:
        aux = collected.aux
        return MarketDataPayload(
            **self._common(symbol, tri, sanity, collected),
            price=tri.median_value,
            volume_24h=aux.get("volume_24h"),
            change_24h_pct=aux.get("change_24h_pct"),
            market_cap=aux.get("market_cap"),
        )


def sentiment_label(score: float) -> str:
    if score <= 25:
        return "extreme fear"
    if score <= 45:
        return "fear"
    if score < 55:
        return "neutral"
    if score < 75:
        return "greed"
    return "extreme greed"


class SentimentCollector(PhaseCollector):
    data_type = JobPhase.SENTIMENT.value
    mode = TRIANGULATE
    metric = "sentiment_score"

    def checks(self) -> List[SanityCheck]:
        return [
            consensus_present(),
            value_in_range("sentiment_score", 0.0, 100.0, severity=Severity.FATAL),
        ]

    def build_payload(self, symbol, tri, sanity, collected) -> BaseModel:
        aux = collected.aux
        return SentimentPayload(
            **self._common(symbol, tri, sanity, collected),
            score=tri.median_value,
            label=sentiment_label(tri.median_value),
            fear_greed_index=aux.get("fear_greed_index"),
            community_up_pct=aux.get("community_up_pct"),
        )


class TechnicalCollector(PhaseCollector):
    data_type = JobPhase.TECHNICAL.value
    mode = CASCADE
    metric = "last_close"
    freshness_window_s = 2 * 3600  # hourly candles

    def _indicators(self, collected: _Collected) -> Dict[str, Any]:
        closes = (collected.winner.extras.get("closes") if collected.winner else None) or []
        return build_indicators(list(closes)) if closes else {}

    def derive(self, collected: _Collected) -> Dict[str, float]:
        ind = self._indicators(collected)
        return {k: float(v) for k, v in ind.items() if isinstance(v, (int, float)) and k != "last_close"}

    def checks(self) -> List[SanityCheck]:
        return [
            consensus_present(),
            metric_non_zero("last_close", severity=Severity.FATAL),
            value_in_range("rsi14", 0.0, 100.0, severity=Severity.FATAL),
            within_ratio_of_previous(self.settings.max_jump_ratio),
            fresh_within(self.freshness_window_s),
        ]

    def previous_value(self, payload: BaseModel) -> Optional[float]:
        return getattr(payload, "last_close", None)

    def build_payload(self, symbol, tri, sanity, collected) -> BaseModel:
        ind = self._indicators(collected)
        ind["last_close"] = tri.median_value
        return TechnicalPayload(**self._common(symbol, tri, sanity, collected), **ind)


class OnChainCollector(PhaseCollector):
    data_type = JobPhase.ON_CHAIN.value
    mode = CASCADE
    metric = "mempool_tx_count"

    def checks(self) -> List[SanityCheck]:
        return [
            consensus_present(),
            metric_non_zero(
                "mempool_tx_count",
                severity=Severity.FATAL,
                name="mempool_non_zero",
                impact="An active network never has an empty mempool; the provider data is invalid",
            ),
            metric_non_zero("hashrate", severity=Severity.FATAL, name="hashrate_non_zero"),
            fresh_within(self.settings.freshness_window_s),
        ]

    def build_payload(self, symbol, tri, sanity, collected) -> BaseModel:
        metrics: Mapping[str, float] = collected.winner.metrics if collected.winner else {}
        return OnChainPayload(
            **self._common(symbol, tri, sanity, collected),
            metrics={k: float(v) for k, v in metrics.items()},
        )


class NewsCollector(PhaseCollector):
    data_type = JobPhase.NEWS.value
    mode = CASCADE
    metric = "article_count"
    freshness_window_s = 48 * 3600

    def checks(self) -> List[SanityCheck]:
        return [
            consensus_present(),
            metric_non_zero("article_count", impact="No recent coverage for this asset"),
            fresh_within(self.freshness_window_s),
        ]

    def build_payload(self, symbol, tri, sanity, collected) -> BaseModel:
        raw = (collected.winner.extras.get("headlines") if collected.winner else None) or []
        return NewsPayload(
            **self._common(symbol, tri, sanity, collected),
            article_count=int(tri.median_value or 0),
            headlines=[Headline(**h) for h in raw],
        )


COLLECTOR_CLASSES = {
    JobPhase.MARKET_DATA: MarketDataCollector,
    JobPhase.SENTIMENT: SentimentCollector,
    JobPhase.TECHNICAL: TechnicalCollector,
    JobPhase.ON_CHAIN: OnChainCollector,
    JobPhase.NEWS: NewsCollector,
}


def build_collectors(
    adapters_by_phase: Mapping[str, Sequence[SourceAdapter]],
    *,
    settings: IntelSettings,
    cache: AnalysisCache,
    health: Optional[SourceHealthTracker] = None,
    alerts: Optional[AlertStore] = None,
) -> Dict[JobPhase, PhaseCollector]:
    return {
        phase: cls(adapters_by_phase[phase.value], settings=settings, cache=cache, health=health, alerts=alerts)
        for phase, cls in COLLECTOR_CLASSES.items()
        if adapters_by_phase.get(phase.value)
    }
