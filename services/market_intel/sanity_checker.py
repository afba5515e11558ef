# services/market_intel/sanity_checker.py
"""
Domain invariants evaluated over a triangulated reading.

Each check is an independent predicate. A failing check becomes a
Discrepancy: WARNING degrades the quality score, FATAL invalidates the
dataset (score forced to 0). A check whose input is absent passes; missing
inputs are already penalised through source availability.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .types import (
    Discrepancy,
    DiscrepancyType,
    SanityCheckResult,
    Severity,
    TriangulationResult,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SanityContext:
    triangulation: TriangulationResult
    aux: Mapping[str, float] = field(default_factory=dict)
    data_timestamp: Optional[datetime] = None
    previous_value: Optional[float] = None
    now: datetime = field(default_factory=utcnow)

    def metric(self, name: str) -> Optional[float]:
        if name == self.triangulation.metric:
            return self.triangulation.median_value
        v = self.aux.get(name)
        return None if v is None else float(v)


Describe = Union[str, Callable[[SanityContext], str]]


@dataclass(frozen=True)
class SanityCheck:
    name: str
    predicate: Callable[[SanityContext], bool]
    severity: Severity
    type: DiscrepancyType
    description: Describe
    impact: str = ""

    def describe(self, ctx: SanityContext) -> str:
        return self.description(ctx) if callable(self.description) else self.description


class SanityChecker:
    def __init__(self, checks: Sequence[SanityCheck]):
        names = [c.name for c in checks]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate sanity check names: {names}")
        self.checks: Tuple[SanityCheck, ...] = tuple(checks)

    def run(self, ctx: SanityContext) -> SanityCheckResult:
        results: Dict[str, bool] = {}
        discrepancies: List[Discrepancy] = []
        affected = tuple(ctx.triangulation.successful_sources)

        for check in self.checks:
            ok = bool(check.predicate(ctx))
            results[check.name] = ok
            if ok:
                continue
            discrepancies.append(
                Discrepancy(
                    type=check.type,
                    severity=check.severity,
                    description=check.describe(ctx),
                    affected_sources=affected,
                    impact=check.impact,
                )
            )

        fatal = [d for d in discrepancies if d.is_fatal]
        if fatal:
            logger.error(
                "sanity_fatal metric=%s checks=%s",
                ctx.triangulation.metric, ",".join(n for n, ok in results.items() if not ok),
            )
        elif discrepancies:
            logger.warning(
                "sanity_warnings metric=%s count=%d", ctx.triangulation.metric, len(discrepancies)
            )

        return SanityCheckResult(
            passed=not fatal,
            checks=results,
            discrepancies=tuple(discrepancies),
        )


# ============================================================================
# CHECK FACTORIES
# ============================================================================

def consensus_present(severity: Severity = Severity.FATAL) -> SanityCheck:
    return SanityCheck(
        name="consensus_present",
        predicate=lambda ctx: ctx.triangulation.has_consensus,
        severity=severity,
        type=DiscrepancyType.NO_CONSENSUS,
        description=lambda ctx: f"No source produced a usable {ctx.triangulation.metric}",
        impact="Dataset has no reconciled value",
    )


def metric_non_zero(
    metric: str,
    *,
    severity: Severity = Severity.WARNING,
    impact: str = "",
    name: Optional[str] = None,
) -> SanityCheck:
    def _pred(ctx: SanityContext) -> bool:
        v = ctx.metric(metric)
        return v is None or v != 0

    return SanityCheck(
        name=name or f"{metric}_non_zero",
        predicate=_pred,
        severity=severity,
        type=DiscrepancyType.ZERO_VALUE,
        description=f"{metric} reported exactly zero",
        impact=impact,
    )


def value_in_range(
    metric: str,
    low: float,
    high: float,
    *,
    severity: Severity = Severity.WARNING,
    impact: str = "",
) -> SanityCheck:
    def _pred(ctx: SanityContext) -> bool:
        v = ctx.metric(metric)
        return v is None or low <= v <= high

    return SanityCheck(
        name=f"{metric}_in_range",
        predicate=_pred,
        severity=severity,
        type=DiscrepancyType.OUT_OF_RANGE,
        description=lambda ctx: f"{metric}={ctx.metric(metric)} outside [{low}, {high}]",
        impact=impact,
    )


def within_ratio_of_previous(
    max_ratio: float,
    *,
    severity: Severity = Severity.WARNING,
) -> SanityCheck:
    """Reconciled value stays within `max_ratio`x of the previously cached one (either direction)."""
    if max_ratio < 1:
        raise ValueError("max_ratio must be >= 1")

    def _pred(ctx: SanityContext) -> bool:
        cur = ctx.triangulation.median_value
        prev = ctx.previous_value
        if cur is None or prev is None or prev <= 0 or cur <= 0:
            return True
        ratio = cur / prev if cur >= prev else prev / cur
        return ratio <= max_ratio

    return SanityCheck(
        name="within_ratio_of_previous",
        predicate=_pred,
        severity=severity,
        type=DiscrepancyType.PRICE_JUMP,
        description=lambda ctx: (
            f"{ctx.triangulation.metric} moved from {ctx.previous_value} to "
            f"{ctx.triangulation.median_value} (> {max_ratio}x)"
        ),
        impact="Possible bad tick or unit mismatch",
    )


def fresh_within(window_s: int, *, severity: Severity = Severity.WARNING) -> SanityCheck:
    def _pred(ctx: SanityContext) -> bool:
        ts = as_utc(ctx.data_timestamp)
        if ts is None:
            return True
        return (as_utc(ctx.now) - ts).total_seconds() <= window_s

    return SanityCheck(
        name="data_fresh",
        predicate=_pred,
        severity=severity,
        type=DiscrepancyType.STALE_DATA,
        description=lambda ctx: f"Data timestamp {ctx.data_timestamp} older than {window_s}s",
        impact="Reading may not reflect current market",
    )
