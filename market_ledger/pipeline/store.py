"""
Market Ledger — Store Queries

Read paths over the snapshot store and the daily value series, plus the one
write path for daily values (the upsert, used only by the backfill).

The upsert uses the dialect's INSERT ... ON CONFLICT DO UPDATE: PostgreSQL in
production, SQLite in tests.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Collection, Iterable, Sequence

import structlog
from sqlalchemy import and_, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from market_ledger.engine.portfolio import PriceQuote
from market_ledger.engine.selector import (
    DailyValueRecord,
    SnapshotRecord,
    rank_key,
    select_daily_value,
)
from market_ledger.models.daily_value import DailyValue
from market_ledger.models.market_item import MarketItem
from market_ledger.models.price_snapshot import PriceSnapshot
from market_ledger.utils.forex import Converter
from market_ledger.utils.money import amount_to_cents, cents_to_amount

logger = structlog.get_logger(__name__)

# Keep IN (...) lists well under driver parameter limits.
_IN_CHUNK = 500


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _chunks(values: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _dialect_insert(session: AsyncSession) -> Any:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"daily value upsert not supported on {dialect!r}")
    return insert


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


async def resolve_item_ids(
    session: AsyncSession,
    game: str,
    canonical_source: str,
    keys: Collection[str],
) -> dict[str, str]:
    """Map vendor join keys (canonical ids) to market item ids."""
    unique = sorted({k for k in keys if k})
    resolved: dict[str, str] = {}
    for chunk in _chunks(unique, _IN_CHUNK):
        stmt = select(MarketItem.canonical_id, MarketItem.id).where(
            MarketItem.game == game,
            MarketItem.canonical_source == canonical_source,
            MarketItem.canonical_id.in_(chunk),
        )
        for canonical_id, item_id in (await session.execute(stmt)).all():
            resolved[canonical_id] = item_id
    return resolved


# ---------------------------------------------------------------------------
# Snapshot reads
# ---------------------------------------------------------------------------


async def load_day_candidates(
    session: AsyncSession,
    currency: str,
    day: date,
) -> list[SnapshotRecord]:
    """
    Snapshots that can win `day` for every item, in one query.

    Only the freshest as_of_date <= day per item can win (ranking key 1), so
    older history is not loaded.
    """
    latest = (
        select(
            PriceSnapshot.item_id.label("item_id"),
            func.max(PriceSnapshot.as_of_date).label("latest_date"),
        )
        .where(PriceSnapshot.currency == currency, PriceSnapshot.as_of_date <= day)
        .group_by(PriceSnapshot.item_id)
        .subquery()
    )
    stmt = (
        select(PriceSnapshot)
        .join(
            latest,
            and_(
                PriceSnapshot.item_id == latest.c.item_id,
                PriceSnapshot.as_of_date == latest.c.latest_date,
            ),
        )
        .where(PriceSnapshot.currency == currency)
    )
    rows = (await session.execute(stmt)).scalars().all()
    return [row.to_record() for row in rows]


async def count_tracked_items(session: AsyncSession, currency: str, on_or_before: date) -> int:
    """Distinct items with at least one snapshot in `currency` up to on_or_before."""
    stmt = select(func.count(distinct(PriceSnapshot.item_id))).where(
        PriceSnapshot.currency == currency,
        PriceSnapshot.as_of_date <= on_or_before,
    )
    return (await session.execute(stmt)).scalar_one()


async def load_item_candidates(
    session: AsyncSession,
    item_ids: Collection[str],
    *,
    on_or_before: date,
    sources: Collection[str] | None = None,
    currency: str | None = None,
    condition: str | None = None,
) -> list[SnapshotRecord]:
    """Snapshot history for specific items, optionally narrowed."""
    records: list[SnapshotRecord] = []
    for chunk in _chunks(sorted(set(item_ids)), _IN_CHUNK):
        stmt = select(PriceSnapshot).where(
            PriceSnapshot.item_id.in_(chunk),
            PriceSnapshot.as_of_date <= on_or_before,
        )
        if sources is not None:
            stmt = stmt.where(PriceSnapshot.source.in_(sorted(sources)))
        if currency is not None:
            stmt = stmt.where(PriceSnapshot.currency == currency)
        if condition is not None:
            stmt = stmt.where(PriceSnapshot.condition == condition)
        rows = (await session.execute(stmt)).scalars().all()
        records.extend(row.to_record() for row in rows)
    return records


# ---------------------------------------------------------------------------
# Daily value write path (backfill only)
# ---------------------------------------------------------------------------


async def upsert_daily_values(
    session: AsyncSession,
    records: Sequence[DailyValueRecord],
) -> int:
    """
    Insert or overwrite daily values keyed by (item_id, as_of_date, currency).

    Caller owns the transaction (commit/rollback).

    Returns:
        Number of rows inserted or updated.
    """
    if not records:
        return 0

    insert = _dialect_insert(session)
    stmt = insert(DailyValue).values([r.as_row() for r in records])
    stmt = stmt.on_conflict_do_update(
        index_elements=[DailyValue.item_id, DailyValue.as_of_date, DailyValue.currency],
        set_={
            "value_cents": stmt.excluded.value_cents,
            "confidence": stmt.excluded.confidence,
            "sources_used": stmt.excluded.sources_used,
            "method": stmt.excluded.method,
        },
    )
    await session.execute(stmt)
    return len(records)


# ---------------------------------------------------------------------------
# Daily value reads
# ---------------------------------------------------------------------------


def _quote_from_daily(row: DailyValue) -> PriceQuote:
    winner = row.sources_used[0] if row.sources_used else {}
    return PriceQuote(
        value_cents=row.value_cents,
        currency=row.currency,
        source=str(winner.get("source", row.method)),
        price_type=winner.get("price_type"),
        as_of_date=row.as_of_date,
        basis="daily",
    )


async def _pick_daily_values(
    session: AsyncSession,
    item_ids: Collection[str],
    currency: str,
    cutoff: date,
    pick: Any = func.max,
) -> dict[str, DailyValue]:
    """One daily value per item, at pick(as_of_date) over as_of_date <= cutoff."""
    found: dict[str, DailyValue] = {}
    for chunk in _chunks(sorted(set(item_ids)), _IN_CHUNK):
        latest = (
            select(
                DailyValue.item_id.label("item_id"),
                pick(DailyValue.as_of_date).label("picked_date"),
            )
            .where(
                DailyValue.item_id.in_(chunk),
                DailyValue.currency == currency,
                DailyValue.as_of_date <= cutoff,
            )
            .group_by(DailyValue.item_id)
            .subquery()
        )
        stmt = (
            select(DailyValue)
            .join(
                latest,
                and_(
                    DailyValue.item_id == latest.c.item_id,
                    DailyValue.as_of_date == latest.c.picked_date,
                ),
            )
            .where(DailyValue.currency == currency)
        )
        for row in (await session.execute(stmt)).scalars().all():
            found[row.item_id] = row
    return found


async def get_latest_daily_values(
    session: AsyncSession,
    item_ids: Collection[str],
    currency: str,
    on_or_before: date | None = None,
) -> dict[str, DailyValue]:
    """Most recent daily value per item with as_of_date <= on_or_before."""
    return await _pick_daily_values(session, item_ids, currency, on_or_before or utc_today())


async def get_baseline_daily_values(
    session: AsyncSession,
    item_ids: Collection[str],
    currency: str,
    days: int,
    on_or_before: date | None = None,
) -> dict[str, DailyValue]:
    """
    Per item, the value it had `days` before on_or_before.

    That is the latest daily value on or before (on_or_before - days). Items
    whose series starts later fall back to their oldest daily value that is
    still on or before on_or_before.
    """
    end = on_or_before or utc_today()
    found = await _pick_daily_values(session, item_ids, currency, end - timedelta(days=days))
    missing = set(item_ids) - set(found)
    if missing:
        found.update(await _pick_daily_values(session, missing, currency, end, pick=func.min))
    return found


async def get_daily_series(
    session: AsyncSession,
    item_id: str,
    currency: str,
    days: int = 90,
    end: date | None = None,
) -> list[DailyValue]:
    """Ascending daily values for the trailing `days` window ending at `end`."""
    end_day = end or utc_today()
    start_day = end_day - timedelta(days=max(1, days) - 1)
    stmt = (
        select(DailyValue)
        .where(
            DailyValue.item_id == item_id,
            DailyValue.currency == currency,
            DailyValue.as_of_date >= start_day,
            DailyValue.as_of_date <= end_day,
        )
        .order_by(DailyValue.as_of_date.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


# ---------------------------------------------------------------------------
# Quotes (query surface for valuation, alerts and UI read paths)
# ---------------------------------------------------------------------------


def _quote_from_record(record: DailyValueRecord) -> PriceQuote:
    winner = record.sources_used[0]
    return PriceQuote(
        value_cents=record.value_cents,
        currency=record.currency,
        source=winner["source"],
        price_type=winner["price_type"],
        as_of_date=date.fromisoformat(winner["snapshot_date"]),
        basis="live",
    )


def pick_live_quote(
    item_id: str,
    currency: str,
    on: date,
    candidates: Sequence[SnapshotRecord],
    convert: Converter | None = None,
) -> PriceQuote | None:
    """
    Best live quote from raw snapshots, using the daily selector's ranking.

    Same-currency observations win outright. Otherwise, if a converter is
    given, the best foreign-currency observation is converted; a None
    conversion leaves the item unpriced.
    """
    same = select_daily_value(item_id, currency, on, candidates)
    if same is not None:
        return _quote_from_record(same)
    if convert is None:
        return None

    foreign = [
        c for c in candidates
        if c.item_id == item_id and c.currency != currency and c.as_of_date <= on
    ]
    if not foreign:
        return None

    best = min(foreign, key=rank_key)
    converted: Decimal | None = convert(cents_to_amount(best.value_cents), best.currency, currency)
    if converted is None or converted <= 0:
        return None

    return PriceQuote(
        value_cents=amount_to_cents(converted),
        currency=currency,
        source=best.source,
        price_type=best.price_type,
        as_of_date=best.as_of_date,
        basis="live",
    )


async def latest_daily_quote(
    session: AsyncSession,
    item_id: str,
    currency: str,
    on_or_before: date | None = None,
) -> PriceQuote | None:
    rows = await get_latest_daily_values(session, [item_id], currency, on_or_before)
    row = rows.get(item_id)
    return _quote_from_daily(row) if row is not None else None


async def latest_value_for(
    session: AsyncSession,
    item_id: str,
    currency: str,
    condition: str | None = None,
    *,
    sources: Collection[str] | None = None,
    on_or_before: date | None = None,
) -> PriceQuote | None:
    """
    Most recent value for (item, condition, currency), or None for "no data".

    Without a condition this is the latest materialized daily value. Daily
    values are condition-agnostic, so a condition-specific lookup ranks the
    matching snapshots live with the same selector.
    """
    on = on_or_before or utc_today()
    if condition is None:
        return await latest_daily_quote(session, item_id, currency, on)

    candidates = await load_item_candidates(
        session,
        [item_id],
        on_or_before=on,
        sources=sources,
        currency=currency,
        condition=condition,
    )
    return pick_live_quote(item_id, currency, on, candidates)


def daily_quotes(rows: dict[str, DailyValue]) -> dict[str, PriceQuote]:
    return {item_id: _quote_from_daily(row) for item_id, row in rows.items()}
