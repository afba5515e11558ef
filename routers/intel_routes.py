# routers/intel_routes.py
"""
Poll-friendly job and cache endpoints.

Clients start (or join) a job for a symbol, then poll its status while the
scheduler advances it one phase per tick.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from middleware.rate_limit import POLL_RATE_LIMIT, START_JOB_RATE_LIMIT, limiter
from schemas.market_intel import CachedDataResponse, JobStatusResponse, dump_payload
from services.market_intel.errors import JobNotFound, JobPersistenceFailure
from services.market_intel.factory import get_orchestrator
from services.market_intel.job_orchestrator import JobOrchestrator, JobView
from services.market_intel.types import DATA_PHASES

logger = logging.getLogger(__name__)

router = APIRouter()

DATA_TYPES = {p.value for p in DATA_PHASES}


def _job_response(view: JobView) -> JobStatusResponse:
    return JobStatusResponse(
        job_id=view.job_id,
        symbol=view.symbol,
        status=view.status,
        phase=view.phase,
        progress=view.progress,
        data_quality=view.data_quality,
        error=view.error,
        analysis=view.analysis,
        quality_summary=view.quality_summary,
        created_at=view.created_at,
        updated_at=view.updated_at,
        completed_at=view.completed_at,
    )


@router.post("/jobs/{symbol}", response_model=JobStatusResponse)
@limiter.limit(START_JOB_RATE_LIMIT)
async def start_job(
    request: Request,
    symbol: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    try:
        view = orchestrator.start_or_reuse(symbol)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except JobPersistenceFailure:
        logger.exception("start_job_failed symbol=%s", symbol)
        raise HTTPException(status_code=503, detail="Job store unavailable, retry shortly")
    return _job_response(view)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
@limiter.limit(POLL_RATE_LIMIT)
async def get_job(
    request: Request,
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    try:
        view = orchestrator.get_job_status(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(view)


@router.get("/cache/{symbol}/{data_type}", response_model=CachedDataResponse)
@limiter.limit(POLL_RATE_LIMIT)
async def get_cached_data(
    request: Request,
    symbol: str,
    data_type: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    if data_type not in DATA_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown data type '{data_type}'")
    try:
        entry = orchestrator.get_cached(symbol, data_type)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if entry is None:
        raise HTTPException(status_code=404, detail="No fresh data cached")

    return CachedDataResponse(
        symbol=entry.symbol,
        data_type=entry.data_type,
        quality_score=entry.quality_score,
        payload=dump_payload(entry.payload),
        created_at=entry.created_at,
        expires_at=entry.expires_at,
    )


@router.get("/cache-stats")
@limiter.limit(POLL_RATE_LIMIT)
async def get_cache_stats(
    request: Request,
    symbol: Optional[str] = Query(default=None, max_length=20),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return orchestrator.cache.stats(symbol)
