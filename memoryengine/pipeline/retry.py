"""Retry policy shared by all provider calls.

The engine never loops on failures by itself: a RetryPolicy with
max_attempts=1 (the default built from Settings) makes exactly one attempt.
Callers that want retries construct a policy with more attempts and either
inject it into the EmbeddingGenerator/LLM client or wrap a public call with
RetryPolicy.run().

Backoff is exponential with full jitter, capped at max_delay. A RateLimited
error carrying retry_after waits at least that long.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from memoryengine.errors import ProviderError, RateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 1
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: bool = True
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    def delay_for(self, attempt: int, error: Exception | None = None) -> float:
        """Delay before the attempt following *attempt* (1-based)."""
        ceiling = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        delay = random.uniform(0, ceiling) if self.jitter else ceiling
        if isinstance(error, RateLimited) and error.retry_after:
            delay = max(delay, error.retry_after)
        return delay

    async def run(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Call *fn* until it succeeds, a non-retryable error occurs, or attempts run out."""
        attempt = 1
        while True:
            try:
                return await fn(*args, **kwargs)
            except ProviderError as exc:
                if not exc.retryable or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt, exc)
                logger.info(
                    "Retry policy: attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    exc.kind.value,
                    delay,
                )
                await self.sleep(delay)
                attempt += 1
