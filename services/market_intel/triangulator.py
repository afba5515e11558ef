# services/market_intel/triangulator.py
"""
Reconcile N readings of one metric into a single value plus a disagreement
measure.

Median, not mean: one outlier provider must not drag the reconciled value.
Divergence is the largest pairwise gap relative to the median, in percent.
"""
from __future__ import annotations

import logging
import math
import statistics
from datetime import datetime
from itertools import combinations
from typing import Dict, List, Optional, Sequence, Tuple

from .types import Divergence, SourceReading, TriangulationResult, utcnow

logger = logging.getLogger(__name__)


def relative_diff_pct(a: float, b: float, reference: float) -> float:
    if a == b:
        return 0.0
    if reference == 0:
        return math.inf
    return abs(a - b) / abs(reference) * 100.0


def max_pairwise_divergence_pct(values: Sequence[float], median: float) -> float:
    if len(values) < 2:
        return 0.0
    return max(relative_diff_pct(a, b, median) for a, b in combinations(values, 2))


class Triangulator:
    def __init__(self, tolerance_pct: float):
        if tolerance_pct < 0:
            raise ValueError("tolerance_pct must be >= 0")
        self.tolerance_pct = tolerance_pct

    def triangulate(
        self,
        readings: Sequence[SourceReading],
        metric: str,
        *,
        now: Optional[datetime] = None,
    ) -> TriangulationResult:
        per_source: Dict[str, Optional[float]] = {}
        usable: List[Tuple[str, float]] = []

        for r in readings:
            v = r.value(metric)
            per_source[r.source_name] = v
            if v is not None:
                usable.append((r.source_name, v))

        computed_at = now or utcnow()

        if not usable:
            logger.info("triangulation_no_consensus metric=%s sources=%d", metric, len(readings))
            return TriangulationResult(
                metric=metric,
                median_value=None,
                per_source_values=per_source,
                divergence=Divergence(),
                computed_at=computed_at,
            )

        values = [v for _, v in usable]
        median = float(statistics.median(values))
        max_pct = max_pairwise_divergence_pct(values, median)

        divergent = tuple(
            name for name, v in usable
            if relative_diff_pct(v, median, median) > self.tolerance_pct
        )

        result = TriangulationResult(
            metric=metric,
            median_value=median,
            per_source_values=per_source,
            divergence=Divergence(
                max_divergence_pct=max_pct,
                has_divergence=max_pct > self.tolerance_pct,
                divergent_sources=divergent,
            ),
            computed_at=computed_at,
        )

        if result.divergence.has_divergence:
            logger.warning(
                "triangulation_divergence metric=%s max_pct=%.3f tolerance=%.3f divergent=%s",
                metric, max_pct, self.tolerance_pct, ",".join(divergent),
            )
        return result
