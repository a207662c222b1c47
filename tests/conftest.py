"""
Market Ledger — Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- aiosqlite-backed async engine + session factory (file DB per test)
- Seed helpers for catalog items and snapshots
- Zero-backoff retry settings
"""

from __future__ import annotations

from datetime import date
from typing import Any, AsyncGenerator, Awaitable, Callable
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from market_ledger.config import settings
from market_ledger.models import Base, MarketItem, PriceSnapshot


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    File-backed SQLite engine with all tables created.

    A file (not :memory:) so that separate sessions see the same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(autouse=True)
def fast_retries():
    """No real sleeping between retry attempts."""
    with patch.object(settings, "RETRY_BASE_BACKOFF_SECONDS", 0.0):
        yield


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def add_items(session_factory) -> Callable[..., Awaitable[None]]:
    """add_items(("item-1", "pokemon", "tcgdex", "sv1-1"), ...)"""

    async def _add(*items: tuple[str, str, str, str]) -> None:
        async with session_factory() as session:
            for item_id, game, canonical_source, canonical_id in items:
                session.add(MarketItem(
                    id=item_id,
                    game=game,
                    canonical_source=canonical_source,
                    canonical_id=canonical_id,
                ))
            await session.commit()

    return _add


def snapshot_row(
    item_id: str,
    value_cents: int,
    as_of_date: date,
    source: str = "tcgplayer",
    price_type: str = "market",
    currency: str = "USD",
    condition: str | None = None,
) -> dict[str, Any]:
    return {
        "item_id": item_id,
        "source": source,
        "price_type": price_type,
        "condition": condition,
        "as_of_date": as_of_date,
        "currency": currency,
        "value_cents": value_cents,
        "raw_provenance": {"test": True},
    }


@pytest.fixture
def add_snapshots(session_factory) -> Callable[..., Awaitable[None]]:
    """add_snapshots(snapshot_row(...), ...)"""

    async def _add(*rows: dict[str, Any]) -> None:
        async with session_factory() as session:
            await session.execute(insert(PriceSnapshot), list(rows))
            await session.commit()

    return _add


@pytest.fixture
def snapshot() -> Callable[..., dict[str, Any]]:
    """Row builder for add_snapshots."""
    return snapshot_row
