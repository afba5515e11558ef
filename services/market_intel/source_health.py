# services/market_intel/source_health.py
"""
Per-provider health scores, persisted through the analysis cache so every
process and every tick sees the same ordering. A score starts at 100,
gains 5 on success, loses 20 on failure, and is clamped to [0, 100]. An
entry that outlives its TTL resets to the starting score.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

from schemas.market_intel import SourceHealthPayload

from .cache_store import HEALTH_SYMBOL, AnalysisCache
from .errors import JobPersistenceFailure

logger = logging.getLogger(__name__)

INITIAL_SCORE = 100
SUCCESS_BONUS = 5
FAILURE_PENALTY = 20


def _data_type(source: str) -> str:
    return f"source-health:{source}"


class SourceHealthTracker:
    def __init__(self, cache: AnalysisCache, ttl_seconds: int = 86_400):
        self._cache = cache
        self._ttl = ttl_seconds

    def _load(self, source: str) -> SourceHealthPayload:
        entry = self._cache.get(HEALTH_SYMBOL, _data_type(source))
        if entry is None or not isinstance(entry.payload, SourceHealthPayload):
            return SourceHealthPayload(source=source, score=INITIAL_SCORE)
        return entry.payload

    def score(self, source: str) -> int:
        return self._load(source).score

    def scores(self, sources: Sequence[str]) -> Dict[str, int]:
        return {s: self.score(s) for s in sources}

    def record(self, source: str, success: bool, error: Optional[str] = None) -> int:
        """Apply one outcome. Health bookkeeping never fails the fetch that produced it."""
        current = self._load(source)
        if success:
            updated = current.model_copy(update={
                "score": min(100, current.score + SUCCESS_BONUS),
                "successes": current.successes + 1,
            })
        else:
            updated = current.model_copy(update={
                "score": max(0, current.score - FAILURE_PENALTY),
                "failures": current.failures + 1,
                "last_error": (error or "")[:300] or None,
            })

        try:
            self._cache.set(HEALTH_SYMBOL, _data_type(source), updated, self._ttl, updated.score)
        except JobPersistenceFailure as e:
            logger.warning("source_health_write_failed source=%s err=%s", source, e)
            return current.score

        if updated.score != current.score:
            logger.debug("source_health source=%s score=%d->%d", source, current.score, updated.score)
        return updated.score
