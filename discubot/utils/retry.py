"""
Bounded retry with exponential backoff and per-attempt timeouts.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: Optional[float] = None) -> float:
    """Delay before ``attempt`` (1-based): ``base * 2**(attempt-2)`` capped at ``max_delay``."""
    if attempt < 2:
        return 0.0
    delay = base_delay * (2 ** (attempt - 2))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: Optional[float] = None,
    timeout: Optional[float] = None,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is exhausted.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first
        base_delay: Seconds before the second attempt
        max_delay: Ceiling for the exponential delay
        timeout: Seconds allowed per attempt; a timeout counts as a failure
        should_retry: Predicate; returning False re-raises immediately
        on_retry: Called with (next_attempt, error) before sleeping

    Returns:
        The first successful result

    Raises:
        The last error once attempts are exhausted
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay = backoff_delay(attempt, base_delay, max_delay)
            if on_retry is not None:
                on_retry(attempt, last_error)
            logger.debug(f"Retrying in {delay:.2f}s (attempt {attempt}/{max_attempts})")
            if delay > 0:
                await sleep(delay)

        try:
            if timeout is not None:
                return await asyncio.wait_for(operation(), timeout=timeout)
            return await operation()
        except asyncio.TimeoutError as e:
            last_error = e
            logger.warning(f"Attempt {attempt}/{max_attempts} timed out after {timeout}s")
        except Exception as e:
            last_error = e
            if should_retry is not None and not should_retry(e):
                raise
            logger.warning(f"Attempt {attempt}/{max_attempts} failed: {e}")

    assert last_error is not None
    raise last_error


def is_retryable(error: BaseException) -> bool:
    """Default predicate: honour a ``retryable`` attribute, retry otherwise."""
    return getattr(error, "retryable", True)
