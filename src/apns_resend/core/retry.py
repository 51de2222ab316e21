"""Retry with exponential backoff and per-attempt timeouts."""

from __future__ import annotations

import asyncio
import logging
import random
from functools import wraps
from typing import TYPE_CHECKING, TypeVar, cast

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

F = TypeVar("F", bound="Callable[..., Awaitable[object]]")


class RetryTimeoutError(Exception):
    """Exception raised when a single attempt exceeds its timeout."""


def compute_backoff(
    attempt: int,
    *,
    base_delay: float,
    backoff_factor: float,
    max_delay: float,
    jitter: bool,
) -> float:
    """Delay before the attempt following ``attempt`` (zero-based).

    Args:
        attempt: Index of the attempt that just failed
        base_delay: Delay after the first failure
        backoff_factor: Multiplier applied per further failure
        max_delay: Upper bound before jitter
        jitter: Scale the delay by a random factor in [0.5, 1.5)

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (backoff_factor**attempt), max_delay)
    if jitter:
        delay *= random.uniform(0.5, 1.5)
    return delay


def with_timeout(timeout_seconds: float) -> Callable[[F], F]:
    """Decorator that adds a timeout to async functions.

    Args:
        timeout_seconds: Maximum time to wait for function completion

    Returns:
        Decorated function raising ``RetryTimeoutError`` on expiry
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: object, **kwargs: object) -> object:
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs),  # type: ignore[misc]
                    timeout=timeout_seconds,
                )
            except TimeoutError as exc:
                logger.warning("Function %s timed out after %.1fs", func.__name__, timeout_seconds)
                msg = f"Operation timed out after {timeout_seconds} seconds"
                raise RetryTimeoutError(msg) from exc

        return cast(F, wrapper)

    return decorator


def with_retry(
    max_attempts: int = 3,
    *,
    base_delay: float = 0.5,
    backoff_factor: float = 2.0,
    max_delay: float = 30.0,
    timeout_seconds: float | None = None,
    jitter: bool = True,
    retry_on: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[F], F]:
    """Retry decorator with exponential backoff.

    Timeouts count as failed attempts and are retried like any other
    failure in ``retry_on``. After the last attempt the last exception
    propagates unchanged.

    Args:
        max_attempts: Maximum number of attempts
        base_delay: Delay after the first failure
        backoff_factor: Multiplier for exponential backoff
        max_delay: Upper bound for a single delay
        timeout_seconds: Optional timeout for each attempt
        jitter: Whether to add random jitter to backoff delays
        retry_on: Exception types that trigger another attempt

    Returns:
        Decorated function with retry logic
    """
    if max_attempts < 1:
        msg = "max_attempts must be at least 1"
        raise ValueError(msg)

    retryable = (*retry_on, RetryTimeoutError)

    def decorator(func: F) -> F:
        if timeout_seconds is not None:
            func = with_timeout(timeout_seconds)(func)

        @wraps(func)
        async def wrapper(*args: object, **kwargs: object) -> object:
            for attempt in range(max_attempts):
                try:
                    logger.debug("Attempt %d/%d for %s", attempt + 1, max_attempts, func.__name__)
                    return await func(*args, **kwargs)  # type: ignore[misc]
                except retryable as e:
                    if attempt == max_attempts - 1:
                        logger.error("All %d attempts failed for %s", max_attempts, func.__name__)
                        raise

                    delay = compute_backoff(
                        attempt,
                        base_delay=base_delay,
                        backoff_factor=backoff_factor,
                        max_delay=max_delay,
                        jitter=jitter,
                    )
                    logger.info(
                        "Attempt %d failed for %s, retrying in %.2fs: %s",
                        attempt + 1,
                        func.__name__,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay)

            msg = "unreachable: retry loop exited without result"
            raise AssertionError(msg)

        return cast(F, wrapper)

    return decorator
