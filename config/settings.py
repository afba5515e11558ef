# config/settings.py
"""
Tunable constants for the data purity layer and the phased job pipeline.

Every threshold the algorithms use lives here so it can be changed per
environment without a redeploy. Values are read once per process through
`get_settings()`; tests build their own `IntelSettings(...)`.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


DEFAULT_CACHE_TTL_S: Dict[str, int] = {
    "market-data": 300,
    "sentiment": 600,
    "technical": 600,
    "on-chain": 600,
    "news": 900,
}

DEFAULT_PHASE_WEIGHTS: Dict[str, float] = {
    "market-data": 0.35,
    "technical": 0.20,
    "sentiment": 0.15,
    "on-chain": 0.15,
    "news": 0.15,
}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_csv(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class QualityWeights:
    availability: float = 0.5
    divergence: float = 0.3
    discrepancy: float = 0.2


@dataclass(frozen=True)
class IntelSettings:
    # data purity
    divergence_tolerance_pct: float = 0.5
    quality_floor: int = 70
    quality_weights: QualityWeights = field(default_factory=QualityWeights)
    max_jump_ratio: float = 3.0          # value vs previously cached value
    freshness_window_s: int = 900
    alert_warnings: bool = False         # queue warning discrepancies for review, not just fatal ones

    # fetching
    adapter_timeout_s: float = 8.0
    fetch_deadline_s: float = 25.0

    # job pipeline
    phase_deadline_s: float = 45.0       # must stay below the invocation limit (60s)
    job_dedupe_window_s: int = 1800
    reclaim_grace_s: int = 120
    max_phase_attempts: int = 3
    required_phases: Tuple[str, ...] = ("market-data",)
    phase_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_PHASE_WEIGHTS))

    # cache
    cache_ttl_s: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_CACHE_TTL_S))
    cache_sweep_grace_s: int = 3600
    source_health_ttl_s: int = 86_400

    # retry policy
    retry_attempts: int = 3
    retry_backoff_min_s: float = 0.2
    retry_backoff_max_s: float = 2.0

    # wiring
    redis_url: Optional[str] = None
    cron_secret: Optional[str] = None

    def ttl_for(self, data_type: str) -> int:
        return int(self.cache_ttl_s.get(data_type, 300))

    @staticmethod
    def from_env() -> "IntelSettings":
        ttl = dict(DEFAULT_CACHE_TTL_S)
        for data_type in ttl:
            env_name = "CACHE_TTL_" + data_type.replace("-", "_").upper() + "_SEC"
            ttl[data_type] = _env_int(env_name, ttl[data_type])

        return IntelSettings(
            divergence_tolerance_pct=_env_float("DIVERGENCE_TOLERANCE_PCT", 0.5),
            quality_floor=_env_int("QUALITY_FLOOR", 70),
            quality_weights=QualityWeights(
                availability=_env_float("QUALITY_WEIGHT_AVAILABILITY", 0.5),
                divergence=_env_float("QUALITY_WEIGHT_DIVERGENCE", 0.3),
                discrepancy=_env_float("QUALITY_WEIGHT_DISCREPANCY", 0.2),
            ),
            max_jump_ratio=_env_float("SANITY_MAX_JUMP_RATIO", 3.0),
            freshness_window_s=_env_int("SANITY_FRESHNESS_WINDOW_SEC", 900),
            alert_warnings=_env_bool("ALERT_WARNINGS", False),

            adapter_timeout_s=_env_float("ADAPTER_TIMEOUT_SEC", 8.0),
            fetch_deadline_s=_env_float("FETCH_DEADLINE_SEC", 25.0),

            phase_deadline_s=_env_float("PHASE_DEADLINE_SEC", 45.0),
            job_dedupe_window_s=_env_int("JOB_DEDUPE_WINDOW_SEC", 1800),
            reclaim_grace_s=_env_int("JOB_RECLAIM_GRACE_SEC", 120),
            max_phase_attempts=_env_int("JOB_MAX_PHASE_ATTEMPTS", 3),
            required_phases=_env_csv("JOB_REQUIRED_PHASES", ("market-data",)),

            cache_ttl_s=ttl,
            cache_sweep_grace_s=_env_int("CACHE_SWEEP_GRACE_SEC", 3600),
            source_health_ttl_s=_env_int("SOURCE_HEALTH_TTL_SEC", 86_400),

            retry_attempts=_env_int("RETRY_MAX_ATTEMPTS", 3),
            retry_backoff_min_s=_env_float("RETRY_BACKOFF_MIN_SEC", 0.2),
            retry_backoff_max_s=_env_float("RETRY_BACKOFF_MAX_SEC", 2.0),

            redis_url=os.getenv("REDIS_URL") or None,
            cron_secret=os.getenv("CRON_SECRET") or None,
        )


@lru_cache(maxsize=1)
def get_settings() -> IntelSettings:
    return IntelSettings.from_env()
