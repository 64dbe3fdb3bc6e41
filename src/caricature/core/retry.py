"""Bounded exponential-backoff retry for vendor calls.

Only :class:`~caricature.core.errors.RateLimitError` is retried.  The vendor
client is responsible for turning an HTTP 429 into that type, so the policy
dispatches on the exception class and never inspects error messages.  Every
other exception propagates on the first attempt without any wait.

Backoff schedule (``base_delay=5``)::

    attempt 1 fails -> wait  5s
    attempt 2 fails -> wait 10s
    attempt 3 fails -> RateLimitError propagates (max_attempts=3)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from caricature.core.errors import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Wait in seconds after the given failed *attempt* (1-based)."""
    return base_delay * 2 ** (attempt - 1)


async def retry_on_rate_limit(
    call: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 5.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "vendor call",
) -> T:
    """Await ``call()`` and retry it while it is rate limited.

    Args:
        call: Zero-argument coroutine factory; invoked once per attempt.
        max_attempts: Total attempts including the first one.
        base_delay: Wait after the first failure; doubles on every further
            failure.
        sleep: Awaitable used for the wait.  Tests inject a recorder here.
        label: Name used in log messages.

    Returns:
        The value of the first successful attempt.

    Raises:
        RateLimitError: If every attempt was rate limited.
        Exception: Any other error raised by *call*, unchanged.
    """
    attempt = 1
    while True:
        try:
            return await call()
        except RateLimitError:
            if attempt >= max_attempts:
                logger.error("%s still rate limited after %d attempts.", label, attempt)
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "%s rate limited (attempt %d/%d); retrying in %.1fs.",
                label,
                attempt,
                max_attempts,
                delay,
            )
            await sleep(delay)
            attempt += 1
