"""
Retry policy shared by every call to an external provider.

    attempt 1 ──fail──▶ sleep(base)  ──▶ attempt 2 ──fail──▶ sleep(base × m) ──▶ attempt 3
                                                                                    │
                                                          RetryExhausted(last_error)◀┘

Only errors the caller classifies as transient are retried; anything else
propagates from the first attempt unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_attempts : total attempts including the first call
    base_delay   : seconds slept before the second attempt
    multiplier   : growth factor applied per subsequent attempt
    max_delay    : ceiling for any single sleep
    """
    max_attempts: int   = 3
    base_delay:   float = 2.0
    multiplier:   float = 2.0
    max_delay:    float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.embedding_max_attempts,
            base_delay=settings.embedding_retry_base_delay,
            multiplier=settings.embedding_retry_multiplier,
            max_delay=settings.embedding_retry_max_delay,
        )


class RetryExhausted(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def run_with_retry(
    operation:    Callable[[], Awaitable[T]],
    policy:       RetryPolicy,
    *,
    is_retryable: Callable[[BaseException], bool],
    sleep:        Callable[[float], Awaitable[None]] = asyncio.sleep,
    label:        str = "operation",
) -> T:
    """
    Await `operation()` until it succeeds or the policy is exhausted.

    Raises:
        RetryExhausted: the last attempt failed with a retryable error.
        Exception:      any non-retryable error, re-raised as-is.
    """
    last_error: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            last_error = exc

        if attempt < policy.max_attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                "Retry | op=%s attempt=%d/%d delay=%.1fs error=%s",
                label, attempt, policy.max_attempts, delay, last_error,
            )
            await sleep(delay)

    logger.error(
        "Retry exhausted | op=%s attempts=%d error=%s",
        label, policy.max_attempts, last_error,
    )
    raise RetryExhausted(policy.max_attempts, last_error)
