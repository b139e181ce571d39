"""Exponential backoff retry for async operations."""

from __future__ import annotations

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]
RetryObserver = Callable[[int, BaseException, float], None]


@dataclass
class RetryOptions:
    """Retry configuration.  Delays are in seconds."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    is_retryable: RetryPredicate = lambda _exc: True
    on_retry: Optional[RetryObserver] = None


@dataclass
class RetryResult(Generic[T]):
    success: bool
    attempts: int
    data: Optional[T] = None
    error: Optional[BaseException] = None


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
) -> RetryResult[T]:
    """Run *operation*, retrying failures with exponential backoff.

    Returns a :class:`RetryResult` instead of raising.  A failure is returned
    immediately once attempts are exhausted or the predicate declines the
    error.  ``asyncio.CancelledError`` is never swallowed.
    """
    opts = options or RetryOptions()
    last_error: BaseException | None = None
    current_delay = opts.initial_delay

    for attempt in range(1, opts.max_attempts + 1):
        try:
            data = await operation()
            return RetryResult(success=True, data=data, attempts=attempt)
        except Exception as exc:
            last_error = exc

            if attempt >= opts.max_attempts or not opts.is_retryable(exc):
                return RetryResult(success=False, error=exc, attempts=attempt)

            delay = min(current_delay, opts.max_delay)
            if opts.jitter:
                spread = delay * 0.25
                delay += random.uniform(-spread, spread)

            log.info("retry.scheduled", attempt=attempt, delay=round(delay, 3), error=str(exc))
            if opts.on_retry is not None:
                opts.on_retry(attempt, exc, delay)

            await asyncio.sleep(delay)
            current_delay *= opts.backoff_multiplier

    return RetryResult(
        success=False,
        error=last_error or RuntimeError("Unknown error"),
        attempts=opts.max_attempts,
    )


def retryable(
    fn: Callable[..., Awaitable[T]],
    options: RetryOptions | None = None,
) -> Callable[..., Awaitable[RetryResult[T]]]:
    """Wrap a coroutine function so every call goes through :func:`with_retry`."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> RetryResult[T]:
        return await with_retry(lambda: fn(*args, **kwargs), options)

    return wrapper


# ── Retryability predicates ───────────────────────────────────────────────

def _message_contains(exc: BaseException, needles: tuple[str, ...]) -> bool:
    msg = str(exc).lower()
    return any(n in msg for n in needles)


def network_error(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    return _message_contains(
        exc, ("network", "timeout", "econnreset", "econnrefused", "fetch failed"),
    )


def server_error(exc: BaseException) -> bool:
    return _message_contains(
        exc,
        (
            "500",
            "502",
            "503",
            "504",
            "internal server error",
            "bad gateway",
            "service unavailable",
        ),
    )


def powershell_error(exc: BaseException) -> bool:
    return _message_contains(
        exc, ("timeout", "connection", "access denied", "temporarily unavailable"),
    )


def any_of(*predicates: RetryPredicate) -> RetryPredicate:
    def check(exc: BaseException) -> bool:
        return any(p(exc) for p in predicates)

    return check
