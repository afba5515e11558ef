# services/sources/base.py
"""
Provider adapters.

An adapter turns one provider endpoint into a `SourceReading`. `fetch()`
never raises: timeouts, transport errors, bad status codes and unparseable
bodies all come back as a failed/timeout reading with the reason attached.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

import httpx

from services.market_intel.errors import InvalidPayload, SourceUnavailable
from services.market_intel.retry_policy import RetryPolicy
from services.market_intel.types import SourceReading, SourceStatus, utcnow

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
USER_AGENT = os.getenv("SOURCES_USER_AGENT", "market-intel-backend/1.0")

Parsed = Tuple[Dict[str, float], Dict[str, Any]]


class RetryableStatus(SourceUnavailable):
    """Provider answered with a status worth retrying (rate limit, 5xx)."""


@runtime_checkable
class SourceAdapter(Protocol):
    name: str
    tier: int

    async def fetch(self, symbol: str, timeout: float) -> SourceReading:
        ...


def as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def require_float(source: str, value: Any, field: str) -> float:
    f = as_float(value)
    if f is None:
        raise InvalidPayload(source, f"missing or non-numeric {field}")
    return f


class HttpSourceAdapter:
    """
    GET one JSON document and hand it to `parse()`.

    Subclasses set `name`, `tier`, implement `request(symbol)` and `parse()`.
    `request()` returns None for symbols the provider does not cover.
    """

    name: str = "base"
    tier: int = 1

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        retry: Optional[RetryPolicy] = None,
        tier: Optional[int] = None,
    ):
        self._client = client
        self._retry = (retry or RetryPolicy.immediate(2)).with_retry_on(
            httpx.TransportError, RetryableStatus
        )
        if tier is not None:
            self.tier = tier

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        """(url, params, headers) for `symbol`, or None when unsupported."""
        raise NotImplementedError

    def parse(self, symbol: str, body: Any) -> Parsed:
        raise NotImplementedError

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Dict[str, Any],
        headers: Dict[str, str],
        timeout: httpx.Timeout,
    ) -> Any:
        response = await client.get(
            url, params=params, headers={"User-Agent": USER_AGENT, **headers}, timeout=timeout
        )
        if response.status_code in RETRY_STATUS_CODES:
            raise RetryableStatus(self.name, f"HTTP {response.status_code}")
        response.raise_for_status()
        return response.json()

    async def fetch(self, symbol: str, timeout: float) -> SourceReading:
        started = time.monotonic()

        def _elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        req = self.request(symbol.upper())
        if req is None:
            return SourceReading.unsupported(self.name, f"{symbol} not supported", tier=self.tier)
        url, params, headers = req

        http_timeout = httpx.Timeout(timeout, connect=min(timeout, 3.0))
        try:
            if self._client is not None:
                body = await self._retry.acall(self._get_json, self._client, url, params, headers, http_timeout)
            else:
                async with httpx.AsyncClient(timeout=http_timeout) as client:
                    body = await self._retry.acall(self._get_json, client, url, params, headers, http_timeout)
            metrics, extras = self.parse(symbol.upper(), body)
        except httpx.TimeoutException:
            logger.warning("source_timeout source=%s symbol=%s timeout=%.1f", self.name, symbol, timeout)
            return SourceReading.timed_out(self.name, timeout, tier=self.tier, latency_ms=_elapsed_ms())
        except (httpx.HTTPError, SourceUnavailable, InvalidPayload, KeyError, TypeError, ValueError) as e:
            logger.warning("source_failed source=%s symbol=%s err=%s", self.name, symbol, e)
            return SourceReading.failed(self.name, str(e), tier=self.tier, latency_ms=_elapsed_ms())

        return SourceReading(
            source_name=self.name,
            status=SourceStatus.SUCCESS,
            metrics=metrics,
            fetched_at=utcnow(),
            latency_ms=_elapsed_ms(),
            tier=self.tier,
            extras=extras,
        )
