# services/market_intel/types.py
"""
Value types shared by the data purity layer and the job pipeline.

Readings, triangulation results and sanity results are immutable; a new
fetch produces new objects instead of mutating old ones.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class SourceStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    # provider does not cover this symbol or has no credentials configured
    UNSUPPORTED = "unsupported"


class Severity(str, Enum):
    WARNING = "warning"
    FATAL = "fatal"


class DiscrepancyType(str, Enum):
    ZERO_VALUE = "zero_value"
    PRICE_JUMP = "price_jump"
    STALE_DATA = "stale_data"
    OUT_OF_RANGE = "out_of_range"
    SOURCE_DIVERGENCE = "source_divergence"
    NO_CONSENSUS = "no_consensus"
    INCONSISTENT = "inconsistent"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPhase(str, Enum):
    INIT = "init"
    MARKET_DATA = "market-data"
    SENTIMENT = "sentiment"
    TECHNICAL = "technical"
    ON_CHAIN = "on-chain"
    NEWS = "news"
    AI_ANALYSIS = "ai-analysis"
    DONE = "done"


PHASE_ORDER: Tuple[JobPhase, ...] = (
    JobPhase.INIT,
    JobPhase.MARKET_DATA,
    JobPhase.SENTIMENT,
    JobPhase.TECHNICAL,
    JobPhase.ON_CHAIN,
    JobPhase.NEWS,
    JobPhase.AI_ANALYSIS,
    JobPhase.DONE,
)

DATA_PHASES: Tuple[JobPhase, ...] = (
    JobPhase.MARKET_DATA,
    JobPhase.SENTIMENT,
    JobPhase.TECHNICAL,
    JobPhase.ON_CHAIN,
    JobPhase.NEWS,
)

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def next_phase(phase: JobPhase) -> JobPhase:
    idx = PHASE_ORDER.index(phase)
    if idx + 1 >= len(PHASE_ORDER):
        return JobPhase.DONE
    return PHASE_ORDER[idx + 1]


def progress_after(phase: JobPhase) -> int:
    """Progress once `phase` has finished; work phases are Init..AIAnalysis."""
    work = PHASE_ORDER[1:-1]
    if phase not in work:
        return 0 if phase == JobPhase.INIT else 100
    done = work.index(phase) + 1
    return int(round(100 * done / len(work)))


# ============================================================================
# READINGS
# ============================================================================

@dataclass(frozen=True)
class SourceReading:
    source_name: str
    status: SourceStatus
    metrics: Dict[str, float] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=utcnow)
    latency_ms: int = 0
    error: Optional[str] = None
    tier: int = 1
    # Non-numeric extras (headlines, candles) that ride along with the metrics.
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == SourceStatus.SUCCESS

    def value(self, metric: str) -> Optional[float]:
        if not self.ok:
            return None
        v = self.metrics.get(metric)
        if v is None:
            return None
        try:
            f = float(v)
        except (TypeError, ValueError):
            return None
        return f if math.isfinite(f) else None

    @staticmethod
    def failed(source_name: str, error: str, *, tier: int = 1, latency_ms: int = 0) -> "SourceReading":
        return SourceReading(
            source_name=source_name,
            status=SourceStatus.FAILED,
            error=error,
            tier=tier,
            latency_ms=latency_ms,
        )

    @staticmethod
    def unsupported(source_name: str, reason: str, *, tier: int = 1) -> "SourceReading":
        return SourceReading(
            source_name=source_name,
            status=SourceStatus.UNSUPPORTED,
            error=reason,
            tier=tier,
        )

    @staticmethod
    def timed_out(source_name: str, timeout_s: float, *, tier: int = 1, latency_ms: int = 0) -> "SourceReading":
        return SourceReading(
            source_name=source_name,
            status=SourceStatus.TIMEOUT,
            error=f"timeout after {timeout_s}s",
            tier=tier,
            latency_ms=latency_ms,
        )

    def to_summary(self) -> Dict[str, Any]:
        return {
            "source": self.source_name,
            "status": self.status.value,
            "tier": self.tier,
            "latencyMs": self.latency_ms,
            "error": self.error,
        }


# ============================================================================
# TRIANGULATION / SANITY
# ============================================================================

@dataclass(frozen=True)
class Divergence:
    max_divergence_pct: float = 0.0
    has_divergence: bool = False
    divergent_sources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TriangulationResult:
    metric: str
    median_value: Optional[float]
    per_source_values: Dict[str, Optional[float]]
    divergence: Divergence
    computed_at: datetime = field(default_factory=utcnow)

    @property
    def has_consensus(self) -> bool:
        return self.median_value is not None

    @property
    def successful_sources(self) -> List[str]:
        return [name for name, v in self.per_source_values.items() if v is not None]

    def to_dict(self) -> Dict[str, Any]:
        max_pct = self.divergence.max_divergence_pct
        return {
            "metric": self.metric,
            "medianValue": self.median_value,
            "perSourceValues": dict(self.per_source_values),
            "divergence": {
                # JSON has no infinity; a reading-less or zero-median result reports None.
                "maxDivergencePct": max_pct if math.isfinite(max_pct) else None,
                "hasDivergence": self.divergence.has_divergence,
                "divergentSources": list(self.divergence.divergent_sources),
            },
            "computedAt": self.computed_at.isoformat(),
        }


@dataclass(frozen=True)
class Discrepancy:
    type: DiscrepancyType
    severity: Severity
    description: str
    affected_sources: Tuple[str, ...] = ()
    impact: str = ""

    @property
    def is_fatal(self) -> bool:
        return self.severity == Severity.FATAL

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["type"] = self.type.value
        d["severity"] = self.severity.value
        d["affected_sources"] = list(self.affected_sources)
        return d


@dataclass(frozen=True)
class SanityCheckResult:
    passed: bool
    checks: Dict[str, bool]
    discrepancies: Tuple[Discrepancy, ...] = ()

    @property
    def warnings(self) -> List[Discrepancy]:
        return [d for d in self.discrepancies if d.severity == Severity.WARNING]

    @property
    def fatals(self) -> List[Discrepancy]:
        return [d for d in self.discrepancies if d.is_fatal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "checks": dict(self.checks),
            "discrepancies": [d.to_dict() for d in self.discrepancies],
        }


@dataclass(frozen=True)
class SourceOutcome:
    """Name + status pair the quality scorer consumes."""
    name: str
    status: SourceStatus

    @staticmethod
    def from_reading(reading: SourceReading) -> "SourceOutcome":
        return SourceOutcome(name=reading.source_name, status=reading.status)
