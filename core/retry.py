# core/retry.py
"""Retry with exponential backoff for outbound provider calls."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog
from config import settings

from core.errors import ProviderError, ProviderUnavailableError, RateLimitError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def default_is_retryable(exc: BaseException) -> bool:
    """Provider errors carry their own flag; anything else is not retried."""
    if isinstance(exc, ProviderError):
        return exc.retryable
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry loop parameterized by attempts, delay, jitter and a predicate.

    ``max_attempts`` counts every call, including the first one. Rate limiting
    and provider unavailability raise the computed delay to a per-attempt floor.
    """

    max_attempts: int = 5
    base_delay: float = 2.0
    jitter: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    rate_limit_floor: tuple[float, float] = (10.0, 5.0)
    unavailable_floor: tuple[float, float] = (5.0, 3.0)
    is_retryable: Callable[[BaseException], bool] = default_is_retryable
    sleep: Callable[[float], Awaitable[None]] = field(
        default=asyncio.sleep, repr=False, compare=False
    )

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_attempts=settings.LLM_RETRY_ATTEMPTS,
            base_delay=settings.LLM_RETRY_DELAY_SECONDS,
            jitter=settings.LLM_RETRY_JITTER_SECONDS,
            max_delay=settings.LLM_RETRY_MAX_DELAY_SECONDS,
            rate_limit_floor=(
                settings.LLM_RATE_LIMIT_FLOOR_SECONDS,
                settings.LLM_RATE_LIMIT_FLOOR_STEP_SECONDS,
            ),
            unavailable_floor=(
                settings.LLM_UNAVAILABLE_FLOOR_SECONDS,
                settings.LLM_UNAVAILABLE_FLOOR_STEP_SECONDS,
            ),
        )

    def delay_for(self, attempt: int, exc: BaseException | None = None) -> float:
        """Return the wait before retrying after the 0-indexed ``attempt``."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        if isinstance(exc, RateLimitError):
            base, step = self.rate_limit_floor
            delay = max(delay, base + step * attempt)
        elif isinstance(exc, ProviderUnavailableError):
            base, step = self.unavailable_floor
            delay = max(delay, base + step * attempt)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
    ) -> T:
        """Await ``operation`` until it succeeds, fails terminally, or attempts run out."""
        attempts = max(1, self.max_attempts)
        for attempt in range(attempts):
            try:
                return await operation()
            except Exception as exc:
                if not self.is_retryable(exc):
                    logger.error(
                        "%s failed with non-retryable error: %s", description, exc
                    )
                    raise
                if attempt >= attempts - 1:
                    logger.error(
                        "%s failed after %s attempts. Last error: %s",
                        description,
                        attempts,
                        exc,
                    )
                    raise
                delay = self.delay_for(attempt, exc)
                logger.warning(
                    "%s attempt %s/%s failed: %s. Retrying in %.2fs",
                    description,
                    attempt + 1,
                    attempts,
                    exc,
                    delay,
                )
                await self.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover
