"""Retry with exponential backoff for backend calls."""

from __future__ import annotations

import asyncio
import inspect
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from .exceptions import BackendError, TransportError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    ``on_retry`` is called as ``(attempt, error, delay_ms)`` before each
    sleep, with ``attempt`` starting at 1. ``retryable`` replaces the
    default error classifier.
    """

    max_retries: int = 3
    initial_delay_ms: float = 1000.0
    max_delay_ms: Optional[float] = None
    backoff_multiplier: float = 2.0
    jitter: bool = False
    on_retry: Optional[Callable[[int, Exception, float], Any]] = None
    retryable: Optional[Callable[[Exception], bool]] = None


NO_RETRY = RetryConfig(max_retries=0)


def is_retryable_error(error: Exception) -> bool:
    """Default classification: rate limits, server errors and transport failures."""
    if isinstance(error, BackendError):
        return error.status == 429 or error.status >= 500
    return isinstance(error, TransportError)


class RetryPolicy:
    """
    Retry policy with exponential backoff.

    Usage:
        policy = RetryPolicy(RetryConfig(max_retries=2, initial_delay_ms=10))
        response = await policy.execute(lambda: transport.request(...))
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def calculate_delay(self, attempt: int, error: Optional[Exception] = None) -> float:
        """Delay in milliseconds before retry number ``attempt``."""
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return float(retry_after) * 1000

        delay = self.config.initial_delay_ms * (self.config.backoff_multiplier ** (attempt - 1))
        if self.config.jitter:
            delay *= random.uniform(0.5, 1.0)
        if self.config.max_delay_ms is not None:
            delay = min(delay, self.config.max_delay_ms)
        return delay

    def should_retry(self, error: Exception) -> bool:
        if self.config.retryable is not None:
            return self.config.retryable(error)
        return is_retryable_error(error)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds or attempts are exhausted."""
        attempt = 0

        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.should_retry(e):
                    raise

                if attempt >= self.config.max_retries:
                    if attempt:
                        logger.error(
                            "retry_exhausted",
                            attempts=attempt + 1,
                            error=str(e),
                        )
                    raise

                attempt += 1
                delay = self.calculate_delay(attempt, e)

                logger.warning(
                    "retry_scheduled",
                    attempt=attempt,
                    delay_ms=round(delay, 2),
                    error=str(e),
                )

                if self.config.on_retry:
                    result = self.config.on_retry(attempt, e, delay)
                    if inspect.isawaitable(result):
                        await result

                await self._sleep(delay / 1000)
