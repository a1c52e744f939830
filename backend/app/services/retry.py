"""
Bounded retry wrapper used around every remote call.

Backoff is linear: after attempt N fails, wait base_delay_ms * N before
attempt N + 1. No jitter. Errors whose ``retryable`` attribute is False are
re-raised on the spot.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from app.errors import RetryExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: int = 1000,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation()`` up to ``max_attempts`` times.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        max_attempts: Attempt cap (>= 1).
        base_delay_ms: Delay unit; the wait after attempt N is N units.
        label: Human-readable name used in log lines and in RetryExhausted.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        Whatever the first successful attempt returns.

    Raises:
        RetryExhausted: every attempt failed; wraps the last error.
        Exception: a non-retryable error, unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        logger.info(f"[{label}] attempt {attempt}/{max_attempts}")
        try:
            result = await operation()
        except Exception as exc:
            if not getattr(exc, "retryable", True):
                logger.warning(f"[{label}] attempt {attempt} failed (not retryable): {exc}")
                raise
            logger.warning(f"[{label}] attempt {attempt} failed: {exc}")
            if attempt == max_attempts:
                raise RetryExhausted(label, max_attempts, exc) from exc
            await sleep(base_delay_ms * attempt / 1000)
        else:
            logger.info(f"[{label}] succeeded on attempt {attempt}")
            return result

    # Unreachable: the loop either returns or raises.
    raise AssertionError("with_retries exited without a result")
