# middleware/rate_limit.py
"""
slowapi limiter shared by the intel routers.

Starting a job is the expensive call (it queues provider fetches and an LLM
request), so it gets a tighter bucket than status polling. Limits are
env-overridable; RATE_LIMIT_ENABLED=0 turns the limiter off (tests, local).
"""
import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

logger = logging.getLogger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    """
    Identify the caller for rate-limiting.

    Behind the platform proxy the client address is the first hop of
    X-Forwarded-For; direct connections fall back to the socket address.
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    return get_remote_address(request)


# ─── Default limits ────────────────────────────────────────────────
DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
START_JOB_RATE_LIMIT = os.getenv("RATE_LIMIT_START_JOB", "10/minute")
POLL_RATE_LIMIT = os.getenv("RATE_LIMIT_POLL", "120/minute")

limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI") or os.getenv("REDIS_URL") or "memory://",
    strategy="fixed-window",
    enabled=os.getenv("RATE_LIMIT_ENABLED", "1") == "1",
)
