"""Retry asynchronous operations that fail with transient error codes.

Only errors whose code is on an explicit allow-list are retried. Anything
else, and the last failure once the attempt budget is spent, propagates
unchanged to the caller.
"""

from __future__ import annotations

import asyncio
import errno
import functools
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger

from ..constants import (
    DEFAULT_RETRY_BACKOFF_MULTIPLIER,
    DEFAULT_RETRY_INITIAL_DELAY,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_RETRYABLE_ERRORS,
)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryConfig:
    """Backoff settings for :func:`with_retry`. Delays are in seconds."""

    max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY
    max_delay: float = DEFAULT_RETRY_MAX_DELAY
    backoff_multiplier: float = DEFAULT_RETRY_BACKOFF_MULTIPLIER
    retryable_errors: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_RETRYABLE_ERRORS))

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not isinstance(self.retryable_errors, frozenset):
            object.__setattr__(self, "retryable_errors", frozenset(self.retryable_errors))

    def merged(self, **overrides: Any) -> "RetryConfig":
        """Return a copy with *overrides* applied (``None`` values are ignored)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "retryable_errors" in changes:
            changes["retryable_errors"] = frozenset(changes["retryable_errors"])
        return replace(self, **changes)

    def delays(self) -> list[float]:
        """The sleep sequence used between attempts (``max_attempts - 1`` values)."""
        out: list[float] = []
        delay = min(self.initial_delay, self.max_delay)
        for _ in range(self.max_attempts - 1):
            out.append(delay)
            delay = min(delay * self.backoff_multiplier, self.max_delay)
        return out


def error_code(exc: BaseException) -> Optional[str]:
    """Return the symbolic error code of *exc* (``"EBUSY"`` etc.), if any.

    A string ``code`` attribute wins; otherwise ``OSError.errno`` is mapped
    through :data:`errno.errorcode`.
    """
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code:
        return code
    num = getattr(exc, "errno", None)
    if isinstance(num, int):
        return errno.errorcode.get(num)
    return None


def is_retryable(exc: BaseException, retryable_errors: frozenset[str]) -> bool:
    code = error_code(exc)
    return code is not None and code in retryable_errors


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    *,
    sleep: SleepFn = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Await *operation*, retrying allow-listed failures with capped backoff.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt.
        config: Retry settings; defaults to :class:`RetryConfig()`.
        sleep: Awaitable sleep used between attempts.
        label: Short name used in debug logs.

    Returns:
        Whatever the first successful attempt returns.

    Raises:
        Exception: The failure of the final attempt, or the first failure whose
            code is not allow-listed, unchanged.
    """
    cfg = config or RetryConfig()
    delay = min(cfg.initial_delay, cfg.max_delay)
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc, cfg.retryable_errors) or attempt >= cfg.max_attempts:
                raise
            logger.debug(
                "Retrying {} after {} (attempt {}/{}, waiting {:.3f}s)",
                label,
                error_code(exc),
                attempt,
                cfg.max_attempts,
                delay,
            )
            await sleep(delay)
            delay = min(delay * cfg.backoff_multiplier, cfg.max_delay)
            attempt += 1


def retrying(
    config: Optional[RetryConfig] = None,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async function so every call goes through :func:`with_retry`."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await with_retry(
                lambda: func(*args, **kwargs),
                config,
                sleep=sleep,
                label=func.__qualname__,
            )

        return wrapper

    return decorator
