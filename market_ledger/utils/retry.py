"""
Market Ledger — Transient I/O Retry

Exponential backoff (base × 2^attempt) for store and vendor reads.
Only transient failures are retried; everything else propagates untouched.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from market_ledger.config import settings
from market_ledger.errors import RetryExhaustedError, TransientStoreError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True when the error is worth retrying (connection loss, timeouts)."""
    if isinstance(exc, (TransientStoreError, OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    max_attempts: int | None = None,
    base_backoff: float | None = None,
) -> T:
    """
    Await `fn()` until it succeeds, retrying transient failures.

    Args:
        fn: Zero-arg coroutine factory. Called once per attempt.
        operation: Label used in logs and in RetryExhaustedError.
        max_attempts: Total attempts (default settings.RETRY_MAX_ATTEMPTS).
        base_backoff: Seconds before the first retry (doubles each time).

    Raises:
        RetryExhaustedError: chained to the last transient error.
        Exception: any non-transient error, immediately.
    """
    attempts = max_attempts if max_attempts is not None else settings.RETRY_MAX_ATTEMPTS
    backoff = base_backoff if base_backoff is not None else settings.RETRY_BASE_BACKOFF_SECONDS
    attempts = max(1, attempts)

    last_error: BaseException | None = None
    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as e:
            if not is_transient(e):
                raise
            last_error = e
            if attempt == attempts - 1:
                break
            wait_time = backoff * (2 ** attempt)
            logger.warning(
                "retry_transient_error",
                operation=operation,
                attempt=attempt + 1,
                wait_seconds=wait_time,
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(wait_time)

    logger.error("retry_exhausted", operation=operation, attempts=attempts)
    raise RetryExhaustedError(operation, attempts) from last_error
