# routers/cron_routes.py
"""
Scheduler entry points. Each call does a bounded amount of work and
returns; the external cron fires them periodically.
"""
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from config.settings import get_settings
from schemas.market_intel import SweepResponse, TickResponse
from services.market_intel.factory import get_orchestrator
from services.market_intel.job_orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def require_cron_secret(request: Request) -> None:
    secret = get_settings().cron_secret
    if not secret:
        return
    auth = request.headers.get("Authorization", "")
    token = auth.split(" ", 1)[1].strip() if auth.lower().startswith("bearer ") else ""
    if not hmac.compare_digest(token, secret):
        logger.warning("cron_unauthorized path=%s", request.scope.get("path", ""))
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/process-jobs", response_model=TickResponse, dependencies=[Depends(require_cron_secret)])
async def process_jobs(orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    report = await orchestrator.run_tick()
    result = report.result
    if result is None:
        return TickResponse(reclaimed=report.reclaimed, claimed=False)
    return TickResponse(
        reclaimed=report.reclaimed,
        claimed=True,
        job_id=result.job_id,
        phase=result.phase,
        status=result.status,
        progress=result.progress,
    )


@router.post("/sweep-cache", response_model=SweepResponse, dependencies=[Depends(require_cron_secret)])
async def sweep_cache(orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    deleted = orchestrator.cache.sweep()
    return SweepResponse(deleted=deleted)
