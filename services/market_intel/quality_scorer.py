# services/market_intel/quality_scorer.py
"""
0-100 confidence for one dataset.

score = 0 on any fatal discrepancy, else a renormalised weighted sum of:
  availability  successful sources / attempted sources
  divergence    1.0 at or below tolerance, tolerance/max above it
  discrepancy   1 / (1 + warning count)
"""
from __future__ import annotations

import logging
import math
from typing import Sequence

from config.settings import QualityWeights

from .types import SanityCheckResult, SourceOutcome, SourceStatus, TriangulationResult

logger = logging.getLogger(__name__)


def divergence_term(max_divergence_pct: float, tolerance_pct: float) -> float:
    if max_divergence_pct <= tolerance_pct:
        return 1.0
    if not math.isfinite(max_divergence_pct) or tolerance_pct <= 0:
        return 0.0
    return tolerance_pct / max_divergence_pct


def availability_term(outcomes: Sequence[SourceOutcome]) -> float:
    """Share of applicable sources that succeeded; unsupported ones are not counted."""
    applicable = [o for o in outcomes if o.status != SourceStatus.UNSUPPORTED]
    if not applicable:
        return 0.0
    ok = sum(1 for o in applicable if o.status == SourceStatus.SUCCESS)
    return ok / len(applicable)


class QualityScorer:
    def __init__(self, weights: QualityWeights, tolerance_pct: float):
        total = weights.availability + weights.divergence + weights.discrepancy
        if total <= 0 or min(weights.availability, weights.divergence, weights.discrepancy) < 0:
            raise ValueError("Quality weights must be non-negative with a positive sum")
        self.weights = weights
        self.tolerance_pct = tolerance_pct

    def score(
        self,
        triangulation: TriangulationResult,
        sanity: SanityCheckResult,
        outcomes: Sequence[SourceOutcome],
    ) -> int:
        if sanity.fatals:
            return 0

        if not triangulation.has_consensus:
            return 0

        w = self.weights
        avail = availability_term(outcomes)
        # One surviving reading triangulates to 0% divergence, so N=1 keeps full credit.
        div = divergence_term(triangulation.divergence.max_divergence_pct, self.tolerance_pct)
        disc = 1.0 / (1 + len(sanity.warnings))

        raw = (w.availability * avail + w.divergence * div + w.discrepancy * disc) / (
            w.availability + w.divergence + w.discrepancy
        )
        score = int(round(max(0.0, min(1.0, raw)) * 100))

        logger.debug(
            "quality_scored metric=%s score=%d avail=%.2f div=%.2f warnings=%d",
            triangulation.metric, score, avail, div, len(sanity.warnings),
        )
        return score
