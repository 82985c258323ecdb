# core/retry.py
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from core.config import logger as core_logger
from core.errors import NetworkError

logger = core_logger.getChild("Retry")

T = TypeVar("T")


async def retry(
    fn: Callable[[], Awaitable[T]],
    retries_left: int = 3,
    interval: float = 1.0,
    exponential: bool = True,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """
    Awaits fn(), retrying on failure with a (by default exponential) backoff.

    Args:
        fn: Zero-argument coroutine function to attempt.
        retries_left: Retries after the first attempt; 3 means up to 4 attempts.
        interval: Seconds to wait before the next attempt.
        exponential: Double the interval after every failed attempt.
        should_retry: Predicate deciding whether an error is worth another attempt.
            None retries every error. Pass core.errors.is_network_error to retry
            only transient failures.

    The final error is re-raised unchanged.
    """
    while True:
        try:
            return await fn()
        except Exception as e:
            if retries_left <= 0:
                logger.warning(f"Giving up after retries exhausted: {e}")
                raise
            if should_retry is not None and not should_retry(e):
                logger.debug(f"Error not eligible for retry ({type(e).__name__}): {e}")
                raise
            logger.info(f"Attempt failed ({e}). Retrying in {interval:.2f}s ({retries_left} retries left)...")
            await asyncio.sleep(interval)
            retries_left -= 1
            if exponential:
                interval *= 2


async def with_timeout(fn: Callable[[], Awaitable[T]], seconds: float) -> T:
    """
    Races fn() against a timer and raises NetworkError when the timer wins.
    Work already handed to a thread keeps running; only the wait is abandoned.
    """
    try:
        return await asyncio.wait_for(fn(), timeout=seconds)
    except asyncio.TimeoutError as e:
        logger.warning(f"Operation timeout after {seconds:.1f}s")
        raise NetworkError(f"Operation timeout after {seconds:.1f}s") from e
