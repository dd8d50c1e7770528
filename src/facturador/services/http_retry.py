from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

from facturador.services.exceptions import RetryableApiError

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay: float
    max_delay: float
    backoff_factor: float
    jitter: float
    retryable_exceptions: tuple[type[Exception], ...]
    retryable_status_codes: frozenset[int] = field(default_factory=frozenset)


# Writes only retry when the request never reached the server.
API_WRITE = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    max_delay=10.0,
    backoff_factor=2.0,
    jitter=0.25,
    retryable_exceptions=(httpx.ConnectError, httpx.ConnectTimeout),
)

API_READ = RetryPolicy(
    max_attempts=4,
    base_delay=0.5,
    max_delay=8.0,
    backoff_factor=2.0,
    jitter=0.25,
    retryable_exceptions=(
        httpx.ConnectError,
        httpx.TimeoutException,
        RetryableApiError,
    ),
    retryable_status_codes=frozenset({429, 502, 503, 504}),
)

AUTH = RetryPolicy(
    max_attempts=2,
    base_delay=0.5,
    max_delay=2.0,
    backoff_factor=2.0,
    jitter=0.25,
    retryable_exceptions=(httpx.ConnectError, httpx.ConnectTimeout),
)


def _calc_delay(attempt: int, policy: RetryPolicy) -> float:
    """Calculate delay with exponential backoff and jitter.

    *attempt* is 0-indexed (0 = delay after first failure).
    """
    delay = policy.base_delay * (policy.backoff_factor**attempt)
    delay = min(delay, policy.max_delay)
    jitter_range = delay * policy.jitter
    delay += random.uniform(-jitter_range, jitter_range)
    return max(0.0, delay)


async def retry_call(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await *func()* with retry per *policy*, re-raising on exhaustion."""
    last_exc: Exception | None = None
    for attempt in range(policy.max_attempts):
        try:
            return await func()
        except policy.retryable_exceptions as exc:
            last_exc = exc
            if attempt < policy.max_attempts - 1:
                delay = _calc_delay(attempt, policy)
                logger.warning(
                    "Retry %d/%d after %s (%.1fs delay)",
                    attempt + 1,
                    policy.max_attempts,
                    type(exc).__name__,
                    delay,
                )
                await sleep_func(delay)
    raise last_exc  # type: ignore[misc]
