"""Retry with exponential backoff for upstream requests.

Only failures that look transient are retried: HTTP 429, any 5xx, httpx
timeouts / transport errors, and errors whose message mentions a rate
limit, a connection problem, a timeout or the network.  Everything else
propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

import httpx

from llm_relay.errors import RetryExhaustedError

_logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds -- exponential: 1, 2, 4 (+ jitter)
MAX_JITTER = 0.5  # seconds

_RETRYABLE_MARKERS = (
    "rate limit",
    "econn",
    "etimedout",
    "timed out",
    "timeout",
    "connection",
    "network",
)


def _status_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    return None


def is_retryable(exc: BaseException) -> bool:
    """Classify *exc* as transient (retry) or permanent (propagate)."""
    status = _status_of(exc)
    if status is not None and (status == 429 or status >= 500):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def retry_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Backoff before retry number ``attempt + 1``: ``base * 2**attempt`` plus jitter."""
    return base_delay * (2 ** attempt) + random.uniform(0, MAX_JITTER)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> T:
    """Await ``fn()``, retrying transient failures up to *max_retries* times.

    ``fn`` is called at most ``max_retries + 1`` times.  When every attempt
    fails a :class:`RetryExhaustedError` is raised, chained to the last
    failure.
    """
    attempts = max_retries + 1
    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt == max_retries:
                raise RetryExhaustedError(attempts, exc) from exc
            delay = retry_delay(attempt, base_delay)
            _logger.warning(
                "Request failed (attempt %d/%d): %s, retrying in %.2fs",
                attempt + 1, attempts, exc, delay,
            )
            await asyncio.sleep(delay)

    # Only reachable with a negative max_retries
    raise RetryExhaustedError(0, None)
