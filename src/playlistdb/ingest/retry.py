"""Bounded exponential-backoff retry for async operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[object]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an operation up to ``max_attempts`` times.

    After failed attempt *k* the policy waits ``base_delay * 2 ** (k - 1)``
    seconds (no jitter). When every attempt fails, the last error is raised.
    Errors that are not instances of ``retry_on`` are raised immediately.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ValueError(msg)
        if self.base_delay < 0:
            msg = f"base_delay must not be negative, got {self.base_delay}"
            raise ValueError(msg)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * 2 ** (attempt - 1)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    log.error("retry_exhausted", attempts=self.max_attempts, error=str(exc))
                    raise
                delay = self.delay_for(attempt)
                log.warning("retry_scheduled", attempt=attempt, delay_seconds=delay, error=str(exc))
                await sleep(delay)
                attempt += 1


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Functional form of :meth:`RetryPolicy.run` that retries on any exception."""
    return await RetryPolicy(max_attempts=max_attempts, base_delay=base_delay).run(operation, sleep=sleep)
