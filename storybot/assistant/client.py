"""Bounded, retrying wrapper around external LLM calls.

Every call takes a slot from a semaphore owned by the client, so at most
``max_concurrency`` requests are in flight; further callers queue in FIFO
order. Rate-limit failures are retried with exponential backoff plus jitter;
anything else fails fast.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from storybot.core.errors import (
    RateLimitedError,
    UpstreamError,
    error_code,
    is_rate_limit_error,
)
from storybot.core.logging import get_logger
from storybot.core.settings import ClusterSettings, resolve_settings

logger = get_logger(__name__)

T = TypeVar("T")

JITTER_SECONDS = 0.2


class BoundedLLMClient:
    """Concurrency-capped client with rate-limit aware retries."""

    def __init__(self, max_concurrency: int = 2, retry_max: int = 3,
                 retry_base_seconds: float = 0.8,
                 jitter_seconds: float = JITTER_SECONDS,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.retry_max = retry_max
        self.retry_base_seconds = retry_base_seconds
        self.jitter_seconds = jitter_seconds
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.in_flight = 0

    @classmethod
    def from_settings(cls, settings: Optional[ClusterSettings] = None) -> "BoundedLLMClient":
        settings = resolve_settings(settings)
        return cls(
            max_concurrency=settings.llm_max_concurrency,
            retry_max=settings.llm_retry_max,
            retry_base_seconds=settings.llm_retry_base_seconds,
        )

    async def call(self, op_name: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``factory()`` inside a concurrency slot.

        Raises:
            RateLimitedError: still rate limited after ``retry_max`` retries
            UpstreamError: any other failure, raised on the first occurrence
        """
        async with self._semaphore:
            self.in_flight += 1
            try:
                return await self._call_with_retry(op_name, factory)
            finally:
                self.in_flight -= 1

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(is_rate_limit_error),
            stop=stop_after_attempt(self.retry_max + 1),
            wait=wait_exponential(multiplier=self.retry_base_seconds, exp_base=2)
            + wait_random(0, self.jitter_seconds),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _call_with_retry(self, op_name: str, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await factory()
        except (RateLimitedError, UpstreamError):
            raise
        except Exception as e:
            if is_rate_limit_error(e):
                logger.warning(f"{op_name}: rate limited after {self.retry_max} retries")
                raise RateLimitedError(op_name=op_name) from e
            status = getattr(e, "status", None) or getattr(e, "status_code", None)
            logger.warning(f"{op_name} failed: {e}")
            raise UpstreamError(str(e), op_name=op_name, status=status,
                                code=error_code(e)) from e
