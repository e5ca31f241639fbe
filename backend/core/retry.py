"""Bounded exponential backoff for idempotent remote calls.

Only :class:`~backend.core.errors.TransientInfraError` is retried. Calls that
are not idempotent (task launches, stops) must not go through here.
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from backend.core.errors import TransientInfraError

T = TypeVar("T")

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class ExponentialBackoff:
    """Delay = min(base_delay * multiplier ** attempt, max_delay) +/- jitter."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter and delay > 0:
            spread = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay

    def should_retry(self, attempt: int, error: Exception) -> bool:
        if attempt >= self.max_retries:
            return False
        return isinstance(error, TransientInfraError)


NO_RETRY = ExponentialBackoff(max_retries=0)


async def call_with_retry(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    policy: ExponentialBackoff,
    operation: str,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Await ``fn(*args, **kwargs)``, retrying transient failures per ``policy``."""

    attempt = 0
    while True:
        try:
            return await fn(*args, **kwargs)
        except Exception as exc:
            if not policy.should_retry(attempt, exc):
                raise
            delay = policy.next_delay(attempt)
            logger.warning(
                "remote_call_retry",
                operation=operation,
                attempt=attempt + 1,
                delay=round(delay, 3),
                error=str(exc),
            )
            attempt += 1
            await sleep(delay)
