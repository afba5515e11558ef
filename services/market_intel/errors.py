# services/market_intel/errors.py
from __future__ import annotations

from typing import List, Optional, Sequence


class MarketIntelError(Exception):
    """Base class for data purity and job pipeline failures."""


class SourceUnavailable(MarketIntelError):
    """A provider timed out or the network call failed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class InvalidPayload(MarketIntelError):
    """A provider answered, but with unparseable or out-of-range data."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class NoDataAvailable(MarketIntelError):
    """Every tier failed; distinct from 'data available but low quality'."""

    def __init__(self, data_type: str, attempted: Sequence[str], last_error: Optional[str] = None):
        self.data_type = data_type
        self.attempted: List[str] = list(attempted)
        self.last_error = last_error
        tried = ", ".join(self.attempted) or "none"
        msg = f"No data available for {data_type}. Attempted: {tried}"
        if last_error:
            msg += f". Last error: {last_error}"
        super().__init__(msg)


class QualityBelowThreshold(MarketIntelError):
    """Aggregated quality failed the configured floor. The data is still stored."""

    def __init__(self, score: float, floor: int):
        self.score = score
        self.floor = floor
        super().__init__(f"Insufficient data quality: {score:.0f}% (minimum {floor}%)")


class JobPersistenceFailure(MarketIntelError):
    """Store writes kept failing after the retry policy gave up."""


class PhaseTimeout(MarketIntelError):
    """A phase overran its wall-clock budget; the job is left for reclaim."""

    def __init__(self, phase: str, deadline_s: float):
        self.phase = phase
        self.deadline_s = deadline_s
        super().__init__(f"Phase {phase} exceeded {deadline_s}s deadline")


class JobNotFound(MarketIntelError):
    pass


class AnalysisUnavailable(MarketIntelError):
    """The AI collaborator could not produce a verdict after retries."""
