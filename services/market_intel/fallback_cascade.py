# services/market_intel/fallback_cascade.py
"""
Walk provider adapters in priority order.

`fetch_first()` stops at the first usable reading and reports which tier
satisfied the request. `fetch_all()` is the triangulation mode: every
adapter is queried concurrently. Both bound each attempt by its own timeout
and the whole call by an overall deadline.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from services.sources.base import SourceAdapter

from .errors import NoDataAvailable
from .source_health import SourceHealthTracker
from .types import SourceReading, SourceStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeResult:
    reading: SourceReading
    source: str
    tier: int
    attempted: Tuple[str, ...]
    failures: Tuple[SourceReading, ...] = ()

    @property
    def is_fallback(self) -> bool:
        return bool(self.failures)

    @property
    def readings(self) -> List[SourceReading]:
        return [*self.failures, self.reading]


class FallbackCascade:
    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        *,
        attempt_timeout_s: float,
        deadline_s: float,
        health: Optional[SourceHealthTracker] = None,
    ):
        if not adapters:
            raise ValueError("FallbackCascade needs at least one adapter")
        self.adapters = list(adapters)
        self.attempt_timeout_s = attempt_timeout_s
        self.deadline_s = deadline_s
        self._health = health

    def ordered(self) -> List[SourceAdapter]:
        """Tier first, then health (best first), then declaration order."""
        if self._health is None:
            return sorted(self.adapters, key=lambda a: a.tier)
        scores = self._health.scores([a.name for a in self.adapters])
        indexed = list(enumerate(self.adapters))
        indexed.sort(key=lambda p: (p[1].tier, -scores.get(p[1].name, 100), p[0]))
        return [a for _, a in indexed]

    async def _attempt(
        self, adapter: SourceAdapter, symbol: str, budget_s: float, metric: Optional[str]
    ) -> SourceReading:
        try:
            reading = await asyncio.wait_for(adapter.fetch(symbol, budget_s), timeout=budget_s)
        except asyncio.TimeoutError:
            reading = SourceReading.timed_out(
                adapter.name, budget_s, tier=adapter.tier, latency_ms=int(budget_s * 1000)
            )
        if reading.tier != adapter.tier:
            reading = SourceReading(
                source_name=reading.source_name,
                status=reading.status,
                metrics=reading.metrics,
                fetched_at=reading.fetched_at,
                latency_ms=reading.latency_ms,
                error=reading.error,
                tier=adapter.tier,
                extras=reading.extras,
            )
        reading = self._require(reading, metric)
        self._record(reading)
        return reading

    def _record(self, reading: SourceReading) -> None:
        # a provider that does not cover the symbol is neither healthy nor failing
        if self._health is not None and reading.status != SourceStatus.UNSUPPORTED:
            self._health.record(reading.source_name, reading.ok, reading.error)

    @staticmethod
    def _require(reading: SourceReading, metric: Optional[str]) -> SourceReading:
        if metric is None or not reading.ok or reading.value(metric) is not None:
            return reading
        return SourceReading.failed(
            reading.source_name,
            f"invalid payload: missing or non-finite {metric}",
            tier=reading.tier,
            latency_ms=reading.latency_ms,
        )

    async def fetch_first(self, symbol: str, data_type: str, *, metric: Optional[str] = None) -> CascadeResult:
        """First usable reading in priority order. Raises NoDataAvailable when all fail."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.deadline_s
        attempted: List[str] = []
        failures: List[SourceReading] = []

        for adapter in self.ordered():
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(
                    "cascade_deadline_exceeded data_type=%s symbol=%s attempted=%s",
                    data_type, symbol, ",".join(attempted),
                )
                break
            attempted.append(adapter.name)
            reading = await self._attempt(adapter, symbol, min(self.attempt_timeout_s, remaining), metric)
            if reading.ok:
                if failures:
                    logger.info(
                        "cascade_fallback_used data_type=%s symbol=%s source=%s tier=%d",
                        data_type, symbol, adapter.name, adapter.tier,
                        extra={"source": adapter.name, "tier": adapter.tier, "data_type": data_type},
                    )
                return CascadeResult(
                    reading=reading,
                    source=adapter.name,
                    tier=adapter.tier,
                    attempted=tuple(attempted),
                    failures=tuple(failures),
                )
            failures.append(reading)

        last_error = failures[-1].error if failures else "deadline exceeded"
        raise NoDataAvailable(data_type, attempted, last_error)

    async def fetch_all(self, symbol: str, *, metric: Optional[str] = None) -> List[SourceReading]:
        """Every adapter concurrently; readings come back in priority order."""
        budget = min(self.attempt_timeout_s, self.deadline_s)
        adapters = self.ordered()
        out = list(await asyncio.gather(*(self._attempt(a, symbol, budget, metric) for a in adapters)))

        ok = sum(1 for r in out if r.status == SourceStatus.SUCCESS)
        logger.info(
            "cascade_fetch_all symbol=%s ok=%d total=%d", symbol, ok, len(out),
            extra={"symbol": symbol},
        )
        return out
