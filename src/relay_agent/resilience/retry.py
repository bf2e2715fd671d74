"""Exponential backoff retry for transient failures."""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from relay_agent.config import RetryConfig
from relay_agent.resilience.errors import error_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_PATTERN = re.compile(
    r"timed out|timeout|econnreset|econnrefused|connection reset|connection refused"
    r"|connection aborted|\b429\b|rate limit|too many requests|\b502\b|bad gateway|\b503\b"
    r"|service unavailable",
    flags=re.IGNORECASE,
)


def is_transient_error(error: BaseException) -> bool:
    """Heuristic used when the caller supplies no `retry_on` predicate."""
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    return bool(_TRANSIENT_PATTERN.search(error_text(error)))


def backoff_delay_ms(
    attempt: int,
    *,
    backoff_ms: float,
    max_backoff_ms: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number `attempt` (0-based), jitter included."""
    jitter = rng() * backoff_ms * 0.1
    return min(backoff_ms * (2**attempt) + jitter, max_backoff_ms)


def execute_with_retry(
    fn: Callable[[], T],
    *,
    max_retries: int = 3,
    backoff_ms: float = 1000.0,
    max_backoff_ms: float = 10000.0,
    retry_on: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    """Call `fn`, retrying up to `max_retries` times after the first attempt.

    The last error is re-raised when retries are exhausted or `retry_on`
    rejects it. No delay follows the final attempt.
    """

    attempt = 0
    while True:
        try:
            return fn()
        except Exception as exc:
            if attempt >= max_retries or not retry_on(exc):
                raise
            delay = backoff_delay_ms(attempt, backoff_ms=backoff_ms, max_backoff_ms=max_backoff_ms)
            logger.warning(
                "Transient failure (attempt %d/%d), retrying in %.0fms: %s",
                attempt + 1,
                max_retries + 1,
                delay,
                exc,
            )
            sleep(delay / 1000.0)
            attempt += 1


async def aexecute_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    backoff_ms: float = 1000.0,
    max_backoff_ms: float = 10000.0,
    retry_on: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Async counterpart of `execute_with_retry`."""

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_retries or not retry_on(exc):
                raise
            delay = backoff_delay_ms(attempt, backoff_ms=backoff_ms, max_backoff_ms=max_backoff_ms)
            logger.warning(
                "Transient failure (attempt %d/%d), retrying in %.0fms: %s",
                attempt + 1,
                max_retries + 1,
                delay,
                exc,
            )
            await sleep(delay / 1000.0)
            attempt += 1


def retry_kwargs(config: RetryConfig) -> dict[str, float]:
    return {
        "max_retries": config.max_retries,
        "backoff_ms": config.backoff_ms,
        "max_backoff_ms": config.max_backoff_ms,
    }
