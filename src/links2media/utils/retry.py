"""Retry helpers: exception markers, linear backoff and an async retry decorator."""

import asyncio
import functools
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from ..config import settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryableError(Exception):
    """Transient failure; the operation may succeed if repeated."""


class NonRetryableError(Exception):
    """Permanent failure; raised through the decorator without another attempt."""


def backoff_delay(attempt: int, base: Optional[float] = None, step: Optional[float] = None) -> float:
    """
    Linear backoff in seconds for a 1-based attempt number.

    Defaults give 0.45s, 0.65s, 0.85s ... for attempts 1, 2, 3.
    """
    base = settings.retry_backoff_base if base is None else base
    step = settings.retry_backoff_step if step is None else step
    return base + step * attempt


def with_retry(
    max_retries: int = 1,
    delay_seconds: Optional[float] = None,
    retryable_exceptions: tuple = (Exception,),
):
    """
    Retry an async callable on the listed exceptions, then re-raise the last one.

    NonRetryableError and cancellation always propagate at once.

    Args:
        max_retries: Extra attempts after the first call
        delay_seconds: Fixed pause between attempts; None uses backoff_delay(attempt)
        retryable_exceptions: Exception types that trigger another attempt

    Usage:
        @with_retry(max_retries=1, retryable_exceptions=(httpx.TransportError,))
        async def fetch_page(url):
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except (NonRetryableError, asyncio.CancelledError):
                    raise
                except retryable_exceptions as e:
                    if attempt > max_retries:
                        logger.error("Giving up", function=func.__name__, attempts=attempt, error=str(e))
                        raise
                    pause = backoff_delay(attempt) if delay_seconds is None else delay_seconds
                    logger.warning(
                        "Retrying",
                        function=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        error=str(e),
                        delay_seconds=pause,
                    )
                    await asyncio.sleep(pause)
                    attempt += 1

        return wrapper

    return decorator
