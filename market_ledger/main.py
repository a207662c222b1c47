"""
Market Ledger — Process Setup

Configures structlog and builds the async SQLAlchemy engine and session
factory shared by every batch job. Jobs themselves are started from cli.py.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from market_ledger.config import settings
from market_ledger.errors import ConfigurationError, TransientStoreError
from market_ledger.utils.retry import retry_async


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def configure_logging(log_level: str | None = None, stream: TextIO = sys.stdout) -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
            Defaults to settings.LOG_LEVEL.
        stream: Where log lines go (stdout unless stdout carries data).
    """
    level_name = (log_level or settings.LOG_LEVEL).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ConfigurationError(f"unknown LOG_LEVEL {level_name!r}")

    # Configure stdlib logging first (for third-party libraries)
    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


def require_database_url() -> str:
    """Fail fast, before any work, when the store is not configured."""
    url = settings.DATABASE_URL.strip()
    if not url:
        raise ConfigurationError("DATABASE_URL is not set")
    return url


def _redact(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if "@" not in rest:
        return url
    return f"{scheme}{sep}***@{rest.split('@', 1)[1]}"


async def create_db_engine(
    database_url: str | None = None,
) -> tuple[Any, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory.

    Uses asyncpg for async Postgres connections in production.

    Returns:
        (engine, session_factory) tuple.
    """
    logger = structlog.get_logger(__name__)
    url = database_url or require_database_url()

    logger.info("database_engine_initializing", database_url=_redact(url))

    engine_kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    engine = create_async_engine(url, **engine_kwargs)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready")
    return engine, session_factory


async def check_database(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """
    Health check: one round trip to the store, retried while it is unreachable.

    Raises:
        RetryExhaustedError: the store stayed unreachable (cause: TransientStoreError).
    """
    logger = structlog.get_logger(__name__)

    async def _ping() -> None:
        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (OperationalError, InterfaceError, OSError) as e:
            raise TransientStoreError(f"store unreachable: {e}") from e

    try:
        await retry_async(_ping, operation="database_health_check")
        logger.info("database_health_check_passed")
    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
