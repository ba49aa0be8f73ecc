"""
Retry with exponential backoff for classified request failures.

Only transient failures are retried: ``ServerError``, ``NetworkError`` and
(unless disabled) ``RequestTimeoutError``. Client errors, malformed
responses and open circuits surface immediately.

Usage:
    from perfwatch.retry import RetryConfig, retry_async, with_retry

    result = await retry_async(
        lambda: breakers.guard(endpoint, lambda: executor.execute(endpoint)),
        RetryConfig(max_retries=2, base_delay=1.0),
    )

    @with_retry(RetryConfig(max_retries=3))
    async def fetch():
        ...
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from perfwatch.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for a request.

    Attributes:
        max_retries: Attempts made after the first one.
        base_delay: Base delay in seconds; attempt k waits base_delay * 2**k.
        max_delay: Upper bound on a single delay.
        retry_on_timeout: Whether RequestTimeoutError is retried.
    """

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    retry_on_timeout: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("RetryConfig", "max_retries must be non-negative")
        if self.base_delay < 0:
            raise ConfigurationError("RetryConfig", "base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ConfigurationError("RetryConfig", "max_delay must be >= base_delay")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def with_overrides(self, **changes: Any) -> "RetryConfig":
        """Create a new config with the given fields replaced."""
        return replace(self, **changes)


def calculate_backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay to wait before ``attempt`` (0-based; attempt 0 never waits).

    >>> calculate_backoff_delay(1, 1.0, 30.0)
    2.0
    >>> calculate_backoff_delay(2, 1.0, 30.0)
    4.0
    """
    if attempt <= 0:
        return 0.0
    return min(base_delay * (2**attempt), max_delay)


def is_retryable(error: BaseException, config: RetryConfig) -> bool:
    """Whether ``error`` warrants another attempt under ``config``."""
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, RequestTimeoutError):
        return config.retry_on_timeout
    return isinstance(error, (ServerError, NetworkError))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    *,
    operation: str = "request",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``fn`` with bounded retries.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        config: Retry policy (defaults to RetryConfig()).
        operation: Name used in log messages.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        The first successful result.

    Raises:
        The last error once attempts are exhausted, or the first
        non-retryable error.
    """
    config = config or RetryConfig()
    last_error: Optional[BaseException] = None

    for attempt in range(config.max_attempts):
        if attempt > 0:
            delay = calculate_backoff_delay(attempt, config.base_delay, config.max_delay)
            logger.warning(
                f"{operation} failed (attempt {attempt}/{config.max_attempts}), "
                f"retrying in {delay:.1f}s: {last_error}"
            )
            await sleep(delay)
        try:
            return await fn()
        except Exception as e:
            if not is_retryable(e, config):
                raise
            last_error = e

    logger.error(f"{operation} failed after {config.max_attempts} attempts: {last_error}")
    assert last_error is not None
    raise last_error


def with_retry(config: Optional[RetryConfig] = None, operation: str | None = None):
    """Decorator form of :func:`retry_async` for coroutine functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = operation or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(lambda: func(*args, **kwargs), config, operation=name)

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "calculate_backoff_delay",
    "is_retryable",
    "retry_async",
    "with_retry",
]
