"""
Retry with exponential backoff and jitter
"""

import asyncio
import logging
import random
import re
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATUS_PATTERN = re.compile(r"(?:status|error:?)\s*(\d{3})")

_NETWORK_MARKERS = (
    "econnrefused",
    "enotfound",
    "fetch failed",
    "connection refused",
    "name or service not known",
)


def _is_transport_error(error: BaseException) -> bool:
    return isinstance(
        error,
        (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError),
    )


def default_should_retry(error: BaseException) -> bool:
    """
    Decide whether an error is transient.

    Transport failures (connect, read, timeout) retry. If the message embeds an
    HTTP status, only 5xx retries. Otherwise abort/timeout and common network
    markers in the message retry.
    """
    if _is_transport_error(error):
        return True
    cause = error.__cause__
    if cause is not None and _is_transport_error(cause):
        return True

    message = str(error).lower()

    match = _STATUS_PATTERN.search(message)
    if match:
        return 500 <= int(match.group(1)) < 600

    if "abort" in message or "timeout" in message:
        return True

    return any(marker in message for marker in _NETWORK_MARKERS)


def calculate_delay(attempt: int, base_delay: float) -> float:
    """Backoff for a 0-indexed attempt: base * 2^n plus up to the same again as jitter"""
    exponential = base_delay * (2 ** attempt)
    return exponential + random.uniform(0, exponential)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.2,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """
    Run ``operation`` up to ``max_retries + 1`` times.

    The last error is re-raised unchanged once retries are exhausted or the
    predicate declines to retry.
    """
    predicate = should_retry or default_should_retry
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_retries or not predicate(e):
                raise
            delay = calculate_delay(attempt, base_delay)
            logger.debug(
                f"Retry {attempt + 1}/{max_retries} after {delay:.3f}s: {e}"
            )
            await asyncio.sleep(delay)
            attempt += 1
