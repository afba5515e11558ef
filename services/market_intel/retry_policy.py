# services/market_intel/retry_policy.py
"""
One retry policy for every outbound call in the pipeline: provider fetches,
AI calls and store writes all go through `RetryPolicy.call` / `.acall`
instead of hand-rolled loops.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import IntelSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_min_s: float = 0.2
    backoff_max_s: float = 2.0
    multiplier: float = 0.5
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def _controller_kwargs(self) -> dict:
        return dict(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(
                multiplier=self.multiplier,
                min=self.backoff_min_s,
                max=self.backoff_max_s,
            ),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        for attempt in Retrying(**self._controller_kwargs()):
            with attempt:
                return fn(*args, **kwargs)
        raise RuntimeError("unreachable")  # pragma: no cover

    async def acall(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        async for attempt in AsyncRetrying(**self._controller_kwargs()):
            with attempt:
                return await fn(*args, **kwargs)
        raise RuntimeError("unreachable")  # pragma: no cover

    def with_retry_on(self, *exc_types: Type[BaseException]) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_min_s=self.backoff_min_s,
            backoff_max_s=self.backoff_max_s,
            multiplier=self.multiplier,
            retry_on=tuple(exc_types),
        )

    @staticmethod
    def from_settings(settings: IntelSettings) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=settings.retry_attempts,
            backoff_min_s=settings.retry_backoff_min_s,
            backoff_max_s=settings.retry_backoff_max_s,
        )

    @staticmethod
    def immediate(max_attempts: int = 3) -> "RetryPolicy":
        """No sleeping between attempts (tests, in-request fallbacks)."""
        return RetryPolicy(max_attempts=max_attempts, backoff_min_s=0.0, backoff_max_s=0.0, multiplier=0.0)
