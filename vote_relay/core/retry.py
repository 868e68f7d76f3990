from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from vote_relay.core.errors import RetryExhaustedError

RETRYABLE_STATUS_CODES = {429, 500, 502, 503}

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 4.0
    max_jitter_seconds: float = 0.25
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)


def is_retryable(exc: BaseException) -> bool:
    return getattr(exc, "status", None) in RETRYABLE_STATUS_CODES


def retry_delay(exc: BaseException, attempt: int, policy: RetryPolicy) -> float:
    retry_after = getattr(exc, "retry_after", None)
    if isinstance(retry_after, (int, float)) and retry_after > 0:
        return float(retry_after)

    base = min(policy.base_delay_seconds * (2**attempt), policy.max_delay_seconds)
    return base + random.uniform(0.0, policy.max_jitter_seconds)


async def with_retry(operation: Callable[[], Awaitable[T]], *, policy: RetryPolicy | None = None) -> T:
    """Await ``operation()`` until it succeeds or fails with a non-retryable error.

    Rate limiting and 500/502/503 responses are retried up to ``policy.max_retries``
    times. Other errors propagate unchanged; a retryable error that survives the last
    attempt is raised as :class:`RetryExhaustedError` chained to the original.
    """
    policy = policy or RetryPolicy()
    attempts = policy.max_retries + 1
    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt == attempts - 1:
                raise RetryExhaustedError(attempts, exc) from exc
            delay = retry_delay(exc, attempt, policy)
            logger.warning(
                "retryable upstream failure status=%s attempt=%s retry_in=%.2fs: %s",
                getattr(exc, "status", None),
                attempt + 1,
                delay,
                exc,
            )
            await policy.sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
