"""Bounded retry for provider calls that were rejected with a rate limit.

A rate-limited call is retried after the provider's advertised
``retry_after`` plus one second, up to a fixed number of attempts.  Crawls
are rate-limited when they raise :class:`CrawlRateLimitError`; generations
when they raise a :class:`GenerationError` carrying ``retry_after`` (HTTP
429).  Every other exception propagates on the first failure.  When the
attempts run out the last error is re-raised unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from site_personalizer.core.exceptions import CrawlRateLimitError, GenerationError
from site_personalizer.crawler.config import DEFAULT_RETRY_AFTER

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Added to the provider's retry-after so the retry lands after the reset.
RETRY_AFTER_MARGIN: float = 1.0


def is_rate_limited(exc: BaseException) -> bool:
    """Return ``True`` for provider rejections that are worth retrying."""
    if isinstance(exc, CrawlRateLimitError):
        return True
    return isinstance(exc, GenerationError) and exc.retry_after is not None


def wait_for_retry_after(retry_state: RetryCallState) -> float:
    """tenacity wait strategy: the failed call's ``retry_after`` plus a margin."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is None:
        retry_after = DEFAULT_RETRY_AFTER
    return float(retry_after) + RETRY_AFTER_MARGIN


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 2,
    should_retry: Callable[[BaseException], bool] = is_rate_limited,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call *fn*, retrying rejected calls up to *max_attempts* times.

    Args:
        fn: Zero-argument coroutine function.
        max_attempts: Total attempts including the first.
        should_retry: Decides whether an exception triggers a retry.
        sleep: Coroutine used for the wait.  Injected by tests.

    Returns:
        Whatever *fn* returns on its first successful attempt.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(max_attempts, 1)),
        wait=wait_for_retry_after,
        retry=retry_if_exception(should_retry),
        reraise=True,
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    return await retrying(fn)
