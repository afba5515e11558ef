# services/market_intel/job_orchestrator.py
"""
Phased analysis jobs driven by an external periodic trigger.

    init -> market-data -> sentiment -> technical -> on-chain -> news
         -> ai-analysis -> done

Each `claim_and_advance()` call claims one job (compare-and-swap on
status/phase/claim_token), runs exactly one phase inside the phase deadline,
persists the result and releases the claim. Nothing survives between calls
except what is in the store, so any invocation can pick up any job.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from config.settings import IntelSettings
from models.analysis_job import AnalysisJob
from schemas.market_intel import normalize_symbol

from .alert_store import AlertStore
from .analyst import AIAnalyst
from .cache_store import AnalysisCache, CacheEntry
from .errors import (
    AnalysisUnavailable,
    JobNotFound,
    JobPersistenceFailure,
    NoDataAvailable,
    PhaseTimeout,
    QualityBelowThreshold,
)
from .job_store import JobStore
from .phase_collectors import PhaseCollector
from .quality_summary import build_quality_summary
from .types import (
    DATA_PHASES,
    JobPhase,
    JobStatus,
    as_utc,
    next_phase,
    progress_after,
    utcnow,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class JobView:
    job_id: str
    symbol: str
    status: str
    phase: str
    progress: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    data_quality: Optional[int] = None
    error: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    result_accumulator: Optional[Dict[str, Any]] = None
    quality_summary: Optional[Dict[str, Any]] = None

    @staticmethod
    def from_row(row: AnalysisJob) -> "JobView":
        return JobView(
            job_id=row.id,
            symbol=row.symbol,
            status=row.status,
            phase=row.phase,
            progress=int(row.progress or 0),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
            completed_at=as_utc(row.completed_at),
            data_quality=row.data_quality,
            error=row.error,
            analysis=row.analysis,
            result_accumulator=dict(row.result_accumulator or {}),
            quality_summary=row.quality_summary,
        )


@dataclass(frozen=True)
class TickResult:
    job_id: str
    symbol: str
    phase_run: str
    outcome: str          # advanced | retry | completed | failed | timeout | claim_lost
    status: str
    phase: str
    progress: int
    error: Optional[str] = None


@dataclass(frozen=True)
class TickReport:
    reclaimed: int
    result: Optional[TickResult]


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        cache: AnalysisCache,
        collectors: Mapping[JobPhase, PhaseCollector],
        analyst: AIAnalyst,
        settings: IntelSettings,
        *,
        clock: Clock = utcnow,
        token_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        alerts: Optional[AlertStore] = None,
    ):
        self.store = store
        self.cache = cache
        self.collectors = dict(collectors)
        self.analyst = analyst
        self.settings = settings
        self.alerts = alerts
        self._clock = clock
        self._token_factory = token_factory
        self._start_lock = threading.Lock()

    def now(self) -> datetime:
        return as_utc(self._clock())

    # ── queries ─────────────────────────────────────────────────────

    def start_or_reuse(self, symbol: str) -> JobView:
        """Return the active job for `symbol` inside the dedupe window, or create one."""
        symbol = normalize_symbol(symbol)
        with self._start_lock:
            now = self.now()
            since = now - timedelta(seconds=self.settings.job_dedupe_window_s)
            existing = self.store.find_active(symbol, since)
            if existing is not None:
                logger.info(
                    "job_reused job_id=%s symbol=%s status=%s", existing.id, symbol, existing.status,
                    extra={"job_id": existing.id, "symbol": symbol},
                )
                return JobView.from_row(existing)

            job = self.store.create(symbol, now)
        logger.info("job_created job_id=%s symbol=%s", job.id, symbol, extra={"job_id": job.id, "symbol": symbol})
        return JobView.from_row(job)

    def get_job_status(self, job_id: str) -> JobView:
        row = self.store.get(job_id)
        if row is None:
            raise JobNotFound(job_id)
        return JobView.from_row(row)

    def get_cached(self, symbol: str, data_type: str) -> Optional[CacheEntry]:
        return self.cache.get(normalize_symbol(symbol), data_type)

    # ── maintenance ─────────────────────────────────────────────────

    def reclaim_stale(self) -> int:
        now = self.now()
        cutoff = now - timedelta(seconds=self.settings.reclaim_grace_s)
        count = self.store.reclaim_stale(cutoff, now)
        if count:
            logger.warning("jobs_reclaimed count=%d cutoff=%s", count, cutoff.isoformat())
        return count

    async def run_tick(self) -> TickReport:
        reclaimed = self.reclaim_stale()
        result = await self.claim_and_advance()
        return TickReport(reclaimed=reclaimed, result=result)

    # ── state machine ───────────────────────────────────────────────

    def _claim(self, token: str) -> Optional[AnalysisJob]:
        now = self.now()
        for candidate in self.store.claim_candidates():
            if not self.store.try_claim(candidate, token, now):
                continue
            claimed = self.store.get_claimed(candidate.id, token)
            if claimed is not None:
                return claimed
        return None

    async def claim_and_advance(self) -> Optional[TickResult]:
        token = self._token_factory()
        job = self._claim(token)
        if job is None:
            logger.debug("tick_no_eligible_job")
            return None

        phase = JobPhase(job.phase)
        if phase == JobPhase.INIT:
            phase = JobPhase.MARKET_DATA
        log_extra = {"job_id": job.id, "symbol": job.symbol, "phase": phase.value, "tick_id": token}
        logger.info("job_claimed job_id=%s symbol=%s phase=%s", job.id, job.symbol, phase.value, extra=log_extra)

        try:
            return await asyncio.wait_for(
                self._run_phase(job, phase, token),
                timeout=self.settings.phase_deadline_s,
            )
        except asyncio.TimeoutError:
            err = PhaseTimeout(phase.value, self.settings.phase_deadline_s)
            # the claim stays in place; reclaim_stale() requeues the job and counts the attempt
            logger.error("phase_timeout job_id=%s phase=%s err=%s", job.id, phase.value, err, extra=log_extra)
            return TickResult(
                job_id=job.id,
                symbol=job.symbol,
                phase_run=phase.value,
                outcome="timeout",
                status=JobStatus.PROCESSING.value,
                phase=phase.value,
                progress=int(job.progress or 0),
                error=str(err),
            )
        except JobPersistenceFailure as e:
            logger.exception("job_persistence_failure job_id=%s phase=%s", job.id, phase.value, extra=log_extra)
            return self._fail(job, phase, token, f"Persistence failure during {phase.value}: {e}")
        except Exception as e:
            logger.exception("phase_crashed job_id=%s phase=%s", job.id, phase.value, extra=log_extra)
            reason = f"{type(e).__name__}: {e}"
            try:
                return self._phase_failed(job, phase, token, reason)
            except JobPersistenceFailure as pe:
                return self._fail(job, phase, token, f"Persistence failure during {phase.value}: {pe}")

    async def _run_phase(self, job: AnalysisJob, phase: JobPhase, token: str) -> TickResult:
        attempts = int(job.phase_attempts or 0)
        if attempts >= self.settings.max_phase_attempts:
            # every earlier claim on this phase expired without a result
            return self._give_up(job, phase, token, attempts, "claim expired without a result")
        if phase in DATA_PHASES:
            return await self._run_data_phase(job, phase, token)
        if phase == JobPhase.AI_ANALYSIS:
            return await self._run_ai_phase(job, token)
        # a job parked at "done" without a terminal status; close it out
        return self._persist(
            job, phase, token, "completed",
            status=JobStatus.COMPLETED.value,
            phase=JobPhase.DONE.value,
            progress=100,
            completed_at=self.now(),
        )

    def _is_required(self, phase: JobPhase) -> bool:
        return phase.value in self.settings.required_phases

    async def _run_data_phase(self, job: AnalysisJob, phase: JobPhase, token: str) -> TickResult:
        collector = self.collectors.get(phase)

        try:
            if collector is None:
                raise NoDataAvailable(phase.value, [], "no providers configured")
            outcome = await collector.collect(job.symbol, now=self.now(), job_id=job.id)
        except NoDataAvailable as e:
            return self._phase_failed(job, phase, token, str(e))

        acc = dict(job.result_accumulator or {})
        acc[phase.value] = outcome.to_accumulator()
        return self._advance(job, phase, token, acc)

    def _advance(self, job: AnalysisJob, phase: JobPhase, token: str, acc: Dict[str, Any]) -> TickResult:
        return self._persist(
            job, phase, token, "advanced",
            status=JobStatus.PROCESSING.value,
            phase=next_phase(phase).value,
            progress=progress_after(phase),
            result_accumulator=acc,
            phase_attempts=0,
        )

    def _skip_optional(self, job: AnalysisJob, phase: JobPhase, token: str, reason: str) -> TickResult:
        logger.warning(
            "optional_phase_failed job_id=%s phase=%s err=%s", job.id, phase.value, reason,
            extra={"job_id": job.id, "phase": phase.value},
        )
        acc = dict(job.result_accumulator or {})
        acc[phase.value] = None
        return self._advance(job, phase, token, acc)

    def _phase_failed(self, job: AnalysisJob, phase: JobPhase, token: str, reason: str) -> TickResult:
        """Optional data phases degrade to no result; required phases and the AI phase retry."""
        if phase in DATA_PHASES and not self._is_required(phase):
            return self._skip_optional(job, phase, token, reason)
        return self._retry_or_fail(job, phase, token, reason)

    def _give_up(self, job: AnalysisJob, phase: JobPhase, token: str, attempts: int, reason: str) -> TickResult:
        if phase in DATA_PHASES and not self._is_required(phase):
            return self._skip_optional(job, phase, token, reason)
        return self._fail(
            job, phase, token,
            f"Required phase {phase.value} failed after {attempts} attempts: {reason}",
            phase_attempts=attempts,
        )

    def overall_quality(self, acc: Mapping[str, Any]) -> int:
        """Weighted mean of phase quality; a configured phase that produced nothing counts as 0."""
        weights = {
            p.value: self.settings.phase_weights.get(p.value, 0.0)
            for p in DATA_PHASES
            if p in self.collectors or acc.get(p.value)
        }
        total = sum(weights.values())
        if total <= 0:
            return 0
        acc_score = 0.0
        for name, w in weights.items():
            result = acc.get(name)
            acc_score += w * (float(result.get("quality", 0)) if result else 0.0)
        return int(round(acc_score / total))

    async def _run_ai_phase(self, job: AnalysisJob, token: str) -> TickResult:
        phase = JobPhase.AI_ANALYSIS
        acc = dict(job.result_accumulator or {})
        quality = self.overall_quality(acc)
        summary = build_quality_summary(acc, quality, self.settings.quality_floor)

        if quality < self.settings.quality_floor:
            err = QualityBelowThreshold(quality, self.settings.quality_floor)
            return self._fail(job, phase, token, str(err), data_quality=quality, quality_summary=summary)

        context = {
            "symbol": job.symbol,
            "data_quality": quality,
            "quality_summary": summary,
            "phases": {p.value: acc.get(p.value) for p in DATA_PHASES},
        }
        try:
            analysis = await self.analyst.analyze(context)
        except AnalysisUnavailable as e:
            return self._retry_or_fail(
                job, phase, token, str(e), data_quality=quality, quality_summary=summary
            )

        return self._persist(
            job, phase, token, "completed",
            status=JobStatus.COMPLETED.value,
            phase=JobPhase.DONE.value,
            progress=100,
            data_quality=quality,
            quality_summary=summary,
            analysis=analysis,
            phase_attempts=0,
            error=None,
            completed_at=self.now(),
        )

    # ── persistence helpers ─────────────────────────────────────────

    def _persist(self, job: AnalysisJob, phase_run: JobPhase, token: str, outcome: str, **values: Any) -> TickResult:
        values.setdefault("updated_at", self.now())
        values["claim_token"] = None
        if not self.store.update_claimed(job.id, token, values):
            return TickResult(
                job_id=job.id,
                symbol=job.symbol,
                phase_run=phase_run.value,
                outcome="claim_lost",
                status=job.status,
                phase=job.phase,
                progress=int(job.progress or 0),
            )

        status = values.get("status", job.status)
        phase = values.get("phase", job.phase)
        progress = int(values.get("progress", job.progress or 0))
        level = logging.ERROR if outcome == "failed" else logging.INFO
        logger.log(
            level,
            "job_%s job_id=%s phase_run=%s next_phase=%s progress=%d",
            outcome, job.id, phase_run.value, phase, progress,
            extra={"job_id": job.id, "symbol": job.symbol, "phase": phase_run.value},
        )
        return TickResult(
            job_id=job.id,
            symbol=job.symbol,
            phase_run=phase_run.value,
            outcome=outcome,
            status=status,
            phase=phase,
            progress=progress,
            error=values.get("error"),
        )

    def _retry_or_fail(self, job: AnalysisJob, phase: JobPhase, token: str, reason: str, **extra: Any) -> TickResult:
        attempts = int(job.phase_attempts or 0) + 1
        if attempts >= self.settings.max_phase_attempts:
            return self._fail(
                job, phase, token,
                f"Required phase {phase.value} failed after {attempts} attempts: {reason}",
                phase_attempts=attempts,
                **extra,
            )
        # stays in-flight and unclaimed; the next tick retries the same phase
        return self._persist(
            job, phase, token, "retry",
            status=JobStatus.PROCESSING.value,
            phase=phase.value,
            phase_attempts=attempts,
            **extra,
        )

    def _fail(self, job: AnalysisJob, phase: JobPhase, token: str, error: str, **extra: Any) -> TickResult:
        try:
            return self._persist(
                job, phase, token, "failed",
                status=JobStatus.FAILED.value,
                error=error,
                completed_at=self.now(),
                **extra,
            )
        except JobPersistenceFailure:
            logger.exception("job_fail_write_failed job_id=%s", job.id, extra={"job_id": job.id})
            return TickResult(
                job_id=job.id,
                symbol=job.symbol,
                phase_run=phase.value,
                outcome="failed",
                status=job.status,
                phase=job.phase,
                progress=int(job.progress or 0),
                error=error,
            )
