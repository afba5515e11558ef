# services/market_intel/factory.py
from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

import httpx
from sqlalchemy.orm import sessionmaker

from config.settings import IntelSettings, get_settings
from services.sources.base import SourceAdapter

from .analyst import AIAnalyst
from .alert_store import AlertStore
from .cache_store import AnalysisCache, RedisMirror
from .job_orchestrator import JobOrchestrator
from .job_store import JobStore
from .phase_collectors import build_collectors
from .retry_policy import RetryPolicy
from .source_health import SourceHealthTracker

logger = logging.getLogger(__name__)


def build_orchestrator(
    session_factory: sessionmaker,
    *,
    settings: Optional[IntelSettings] = None,
    adapters: Optional[Mapping[str, Sequence[SourceAdapter]]] = None,
    analyst: Optional[AIAnalyst] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    mirror: Optional[RedisMirror] = None,
    clock=None,
) -> JobOrchestrator:
    settings = settings or get_settings()
    retry = RetryPolicy.from_settings(settings)
    clock_kw = {"clock": clock} if clock is not None else {}

    cache = AnalysisCache(
        session_factory,
        retry=retry,
        mirror=mirror if mirror is not None else RedisMirror.from_url(settings.redis_url),
        sweep_grace_s=settings.cache_sweep_grace_s,
        **clock_kw,
    )
    health = SourceHealthTracker(cache, settings.source_health_ttl_s)
    alerts = AlertStore(session_factory, include_warnings=settings.alert_warnings, **clock_kw)

    if adapters is None:
        from services.sources.registry import build_adapters

        adapters = build_adapters(http_client, retry=retry)

    if analyst is None:
        from services.ai.market_analyst import LLMAnalyst

        analyst = LLMAnalyst(retry=retry)

    collectors = build_collectors(adapters, settings=settings, cache=cache, health=health, alerts=alerts)
    logger.info(
        "orchestrator_ready phases=%s redis=%s",
        ",".join(p.value for p in collectors), bool(settings.redis_url),
    )
    return JobOrchestrator(
        JobStore(session_factory, retry=retry),
        cache,
        collectors,
        analyst,
        settings,
        alerts=alerts,
        **clock_kw,
    )


_orchestrator: Optional[JobOrchestrator] = None


def get_orchestrator() -> JobOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        from database import SessionLocal

        _orchestrator = build_orchestrator(SessionLocal)
    return _orchestrator
