# services/market_intel/job_store.py
"""
Persistence for analysis jobs.

Every state change is a single-row UPDATE guarded by the expected state
(compare-and-swap). A worker owns a job only while `claim_token` holds its
token; it releases the claim when it persists the phase result.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import case, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from models.analysis_job import AnalysisJob

from .errors import JobPersistenceFailure
from .retry_policy import RetryPolicy
from .types import JobPhase, JobStatus

logger = logging.getLogger(__name__)

CLAIM_CANDIDATES = 5


class JobStore:
    def __init__(self, session_factory: sessionmaker, *, retry: Optional[RetryPolicy] = None):
        self._session_factory = session_factory
        self._retry = (retry or RetryPolicy.immediate(3)).with_retry_on(OperationalError)

    def _write(self, label: str, fn, *args: Any) -> Any:
        try:
            return self._retry.call(fn, *args)
        except OperationalError as e:
            logger.error("job_store_write_failed op=%s err=%s", label, e)
            raise JobPersistenceFailure(f"{label} failed after retries: {e}") from e

    # ── read ────────────────────────────────────────────────────────

    def get(self, job_id: str) -> Optional[AnalysisJob]:
        with self._session_factory() as db:
            return db.get(AnalysisJob, job_id)

    def find_active(self, symbol: str, since: datetime) -> Optional[AnalysisJob]:
        """Newest queued/processing job for `symbol` created at or after `since`."""
        with self._session_factory() as db:
            return (
                db.query(AnalysisJob)
                .filter(
                    AnalysisJob.symbol == symbol,
                    AnalysisJob.status.in_([JobStatus.QUEUED.value, JobStatus.PROCESSING.value]),
                    AnalysisJob.created_at >= since,
                )
                .order_by(AnalysisJob.created_at.desc())
                .first()
            )

    def claim_candidates(self, limit: int = CLAIM_CANDIDATES) -> List[AnalysisJob]:
        """Unclaimed jobs, in-flight (processing) before new (queued), oldest first."""
        in_flight_first = case((AnalysisJob.status == JobStatus.PROCESSING.value, 0), else_=1)
        with self._session_factory() as db:
            return (
                db.query(AnalysisJob)
                .filter(
                    AnalysisJob.claim_token.is_(None),
                    AnalysisJob.status.in_([JobStatus.QUEUED.value, JobStatus.PROCESSING.value]),
                )
                .order_by(in_flight_first, AnalysisJob.created_at.asc())
                .limit(limit)
                .all()
            )

    # ── write ───────────────────────────────────────────────────────

    def create(self, symbol: str, now: datetime) -> AnalysisJob:
        def _insert() -> AnalysisJob:
            with self._session_factory() as db:
                job = AnalysisJob(
                    symbol=symbol,
                    status=JobStatus.QUEUED.value,
                    phase=JobPhase.INIT.value,
                    progress=0,
                    result_accumulator={},
                    phase_attempts=0,
                    created_at=now,
                    updated_at=now,
                )
                db.add(job)
                db.commit()
                return job

        return self._write("create_job", _insert)

    def get_claimed(self, job_id: str, token: str) -> Optional[AnalysisJob]:
        """The row as `token` owns it; run phases from this copy, never from a candidate read."""
        with self._session_factory() as db:
            return (
                db.query(AnalysisJob)
                .filter(AnalysisJob.id == job_id, AnalysisJob.claim_token == token)
                .first()
            )

    def try_claim(self, job: AnalysisJob, token: str, now: datetime) -> bool:
        """CAS: succeeds only if the job is still unclaimed in the status and phase we observed."""
        def _cas() -> int:
            with self._session_factory() as db:
                res = db.execute(
                    update(AnalysisJob)
                    .where(
                        AnalysisJob.id == job.id,
                        AnalysisJob.status == job.status,
                        AnalysisJob.phase == job.phase,
                        AnalysisJob.claim_token.is_(None),
                    )
                    .values(
                        status=JobStatus.PROCESSING.value,
                        claim_token=token,
                        updated_at=now,
                    )
                )
                db.commit()
                return res.rowcount

        return self._write("claim_job", _cas) == 1

    def update_claimed(self, job_id: str, token: str, values: Dict[str, Any]) -> bool:
        """Apply `values` if `token` still owns the job. False means the claim was lost."""
        def _upd() -> int:
            with self._session_factory() as db:
                res = db.execute(
                    update(AnalysisJob)
                    .where(AnalysisJob.id == job_id, AnalysisJob.claim_token == token)
                    .values(**values)
                )
                db.commit()
                return res.rowcount

        ok = self._write("update_job", _upd) == 1
        if not ok:
            logger.warning("job_claim_lost job_id=%s", job_id, extra={"job_id": job_id})
        return ok

    def reclaim_stale(self, cutoff: datetime, now: datetime) -> int:
        """
        Processing jobs untouched since `cutoff` go back to queued; phase and
        results are kept. A claim that expired without a result (timeout or a
        dead worker) counts as one failed attempt of the current phase.
        """
        abandoned = case(
            (AnalysisJob.claim_token.is_not(None), AnalysisJob.phase_attempts + 1),
            else_=AnalysisJob.phase_attempts,
        )

        def _reclaim() -> int:
            with self._session_factory() as db:
                res = db.execute(
                    update(AnalysisJob)
                    .where(
                        AnalysisJob.status == JobStatus.PROCESSING.value,
                        AnalysisJob.updated_at < cutoff,
                    )
                    .values(
                        status=JobStatus.QUEUED.value,
                        claim_token=None,
                        phase_attempts=abandoned,
                        updated_at=now,
                    )
                )
                db.commit()
                return res.rowcount

        return int(self._write("reclaim_stale", _reclaim) or 0)
