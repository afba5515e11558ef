# routers/alert_routes.py
"""
Operator review queue for data-quality alerts. Guarded by the same bearer
secret as the scheduler endpoints.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from routers.cron_routes import require_cron_secret
from schemas.market_intel import AlertReviewRequest, AlertStatsResponse, DataAlertResponse
from services.market_intel.alert_store import AlertStore
from services.market_intel.factory import get_orchestrator
from services.market_intel.job_orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


def get_alert_store(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> AlertStore:
    if orchestrator.alerts is None:
        raise HTTPException(status_code=503, detail="Alert store not configured")
    return orchestrator.alerts


@router.get("", response_model=List[DataAlertResponse])
async def list_alerts(
    pending_only: bool = Query(default=True),
    limit: int = Query(default=50, ge=1, le=500),
    alerts: AlertStore = Depends(get_alert_store),
):
    rows = alerts.pending(limit) if pending_only else alerts.recent(limit)
    return [DataAlertResponse(**r) for r in rows]


@router.get("/stats", response_model=AlertStatsResponse)
async def alert_stats(alerts: AlertStore = Depends(get_alert_store)):
    return AlertStatsResponse(**alerts.statistics())


@router.post("/{alert_id}/review", response_model=DataAlertResponse)
async def review_alert(
    alert_id: int,
    body: AlertReviewRequest,
    alerts: AlertStore = Depends(get_alert_store),
):
    row = alerts.mark_reviewed(alert_id, body.reviewed_by, body.notes)
    if row is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return DataAlertResponse(**row)
