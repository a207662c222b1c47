"""
Market Ledger — Snapshot Normalizer

Turns raw vendor rows into canonical price snapshots and appends them to
the snapshot store. One raw row can produce several snapshots (one per
non-empty price column).

Parsing is deliberately tolerant: "$12.34", "1,234.56" and " 7 " all parse.
Anything that still is not a positive amount is a data-quality skip, counted
and logged, never an exception. Store failures (transient ones once the
retry policy gives up) end a vendor's run with NormalizationFailed; other
vendors carry on.

Currency always comes from the feed declaration, never from number format.
"""

from __future__ import annotations

import re
from collections import Counter
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, NamedTuple, Sequence

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import insert, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_ledger.config import SkipReason, settings
from market_ledger.errors import NormalizationFailed, RetryExhaustedError
from market_ledger.models.price_snapshot import PriceSnapshot
from market_ledger.pipeline.store import resolve_item_ids, utc_today
from market_ledger.pipeline.vendor_feeds import VendorFeed
from market_ledger.utils.condition_map import normalize_condition
from market_ledger.utils.money import amount_to_cents
from market_ledger.utils.retry import retry_async

logger = structlog.get_logger(__name__)

_NOT_NUMERIC = re.compile(r"[^0-9.\-]")

# Largest value the INTEGER value_cents columns hold.
MAX_VALUE_CENTS = 2_147_483_647


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class RowSkip(NamedTuple):
    column: str | None
    reason: SkipReason


class RowResult(NamedTuple):
    snapshots: list[dict[str, Any]]
    skips: list[RowSkip]


class NormalizerReport(BaseModel):
    """Counts for one vendor run."""

    source: str
    rows_seen: int = 0
    rows_matched: int = 0
    snapshots_written: int = 0
    skipped: dict[str, int] = Field(default_factory=dict)

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_amount(raw: Any) -> Decimal | SkipReason:
    """
    Parse a vendor price cell into a Decimal amount.

    Strings keep only digits, a leading minus sign and the decimal point.
    """
    if raw is None:
        return SkipReason.EMPTY_VALUE

    if isinstance(raw, bool):
        return SkipReason.UNPARSEABLE
    if isinstance(raw, (int, Decimal)):
        amount = Decimal(raw)
    elif isinstance(raw, float):
        amount = Decimal(str(raw))
    else:
        text = str(raw).strip()
        if not text:
            return SkipReason.EMPTY_VALUE
        cleaned = _NOT_NUMERIC.sub("", text)
        negative = cleaned.startswith("-")
        cleaned = cleaned.replace("-", "")
        if not cleaned or cleaned == ".":
            return SkipReason.UNPARSEABLE
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            return SkipReason.UNPARSEABLE
        if negative:
            amount = -amount

    if not amount.is_finite():
        return SkipReason.UNPARSEABLE
    return amount


def parse_value_cents(raw: Any, in_cents: bool = False) -> int | SkipReason:
    """
    Parse a price cell straight to integer minor units.

    "$12.34" -> 1234. Zero, negative, empty and garbage cells are skips, as
    are amounts too large for the store.
    """
    amount = parse_amount(raw)
    if isinstance(amount, SkipReason):
        return amount

    cents = amount_to_cents(amount / 100) if in_cents else amount_to_cents(amount)
    if cents <= 0:
        return SkipReason.NON_POSITIVE
    if cents > MAX_VALUE_CENTS:
        return SkipReason.OUT_OF_RANGE
    return cents


def resolve_as_of_date(raw: Any, ingest_date: date) -> date:
    """Observation timestamp truncated to a UTC day; ingestion day if absent."""
    if raw is None or raw == "":
        return ingest_date
    if isinstance(raw, datetime):
        moment = raw
    elif isinstance(raw, date):
        return raw
    else:
        text = str(raw).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            logger.debug("normalizer_timestamp_unparseable", raw=str(raw))
            return ingest_date

    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def row_item_key(row: Mapping[str, Any], feed: VendorFeed) -> str | None:
    value = row.get(feed.item_key_column)
    return None if _blank(value) else str(value).strip()


def row_game(row: Mapping[str, Any], feed: VendorFeed) -> str:
    if feed.game_column:
        value = row.get(feed.game_column)
        if not _blank(value):
            return str(value).strip().lower()
    return feed.game


def normalize_row(
    row: Mapping[str, Any],
    feed: VendorFeed,
    *,
    item_id: str,
    ingest_date: date,
) -> RowResult:
    """
    Normalize one raw vendor row for an already-resolved catalog item.

    Returns:
        RowResult with snapshot dicts (ready for insert) and per-column skips.
    """
    as_of = resolve_as_of_date(
        row.get(feed.updated_column) if feed.updated_column else None, ingest_date
    )
    condition = (
        normalize_condition(row.get(feed.condition_column)) if feed.condition_column else None
    )

    snapshots: list[dict[str, Any]] = []
    skips: list[RowSkip] = []
    for column, price_type in feed.price_columns.items():
        raw = row.get(column)
        cents = parse_value_cents(raw, in_cents=feed.values_in_cents)
        if isinstance(cents, SkipReason):
            skips.append(RowSkip(column, cents))
            continue
        snapshots.append({
            "item_id": item_id,
            "source": feed.source.value,
            "price_type": price_type,
            "condition": condition,
            "as_of_date": as_of,
            "currency": feed.currency,
            "value_cents": cents,
            "raw_provenance": {
                "table": feed.table,
                "column": column,
                "key": row_item_key(row, feed),
                "raw": str(raw),
            },
        })
    return RowResult(snapshots, skips)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class SnapshotNormalizer:
    """
    Ingest one vendor's raw rows into price_snapshots.

    Usage:
        normalizer = SnapshotNormalizer(session_factory)
        report = await normalizer.run(get_feed("tcgplayer"))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int | None = None,
    ):
        self.session_factory = session_factory
        self._batch_size = batch_size or settings.BACKFILL_UPSERT_BATCH_SIZE

    async def fetch_rows(self, feed: VendorFeed) -> list[dict[str, Any]]:
        """Read every row of the feed's raw vendor table."""
        # Table name is validated as a plain (schema.)identifier by VendorFeed.
        stmt = text(f"SELECT * FROM {feed.table}")

        async def _read() -> list[dict[str, Any]]:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [dict(r) for r in result.mappings().all()]

        return await retry_async(_read, operation=f"vendor_read:{feed.source.value}")

    async def _resolve_items(
        self, feed: VendorFeed, rows: Sequence[Mapping[str, Any]]
    ) -> dict[tuple[str, str], str]:
        keys_by_game: dict[str, set[str]] = {}
        for row in rows:
            key = row_item_key(row, feed)
            if key is not None:
                keys_by_game.setdefault(row_game(row, feed), set()).add(key)

        async def _lookup() -> dict[tuple[str, str], str]:
            found: dict[tuple[str, str], str] = {}
            async with self.session_factory() as session:
                for game, keys in keys_by_game.items():
                    mapping = await resolve_item_ids(session, game, feed.canonical_source, keys)
                    for key, item_id in mapping.items():
                        found[(game, key)] = item_id
            return found

        return await retry_async(_lookup, operation=f"item_lookup:{feed.source.value}")

    async def _append(self, batch: list[dict[str, Any]], source: str) -> None:
        async def _write() -> None:
            async with self.session_factory() as session:
                await session.execute(insert(PriceSnapshot), batch)
                await session.commit()

        await retry_async(_write, operation=f"snapshot_append:{source}")

    async def run(
        self,
        feed: VendorFeed,
        rows: Iterable[Mapping[str, Any]] | None = None,
        ingest_date: date | None = None,
    ) -> NormalizerReport:
        """
        Normalize and append one vendor's rows.

        Args:
            feed: Vendor description.
            rows: Raw rows; read from the vendor table when omitted.
            ingest_date: Fallback as_of_date for rows without a timestamp.

        Raises:
            NormalizationFailed: a store error, or transient store I/O that
                kept failing after retries.
        """
        source = feed.source.value
        today = ingest_date or utc_today()
        report = NormalizerReport(source=source)
        skipped: Counter[str] = Counter()

        logger.info("normalizer_run_start", source=source, table=feed.table)

        try:
            raw_rows = list(rows) if rows is not None else await self.fetch_rows(feed)
            report.rows_seen = len(raw_rows)
            items = await self._resolve_items(feed, raw_rows)

            pending: list[dict[str, Any]] = []
            for row in raw_rows:
                key = row_item_key(row, feed)
                if key is None:
                    skipped[SkipReason.MISSING_ITEM_KEY.value] += 1
                    continue
                item_id = items.get((row_game(row, feed), key))
                if item_id is None:
                    skipped[SkipReason.UNKNOWN_ITEM.value] += 1
                    continue

                report.rows_matched += 1
                result = normalize_row(row, feed, item_id=item_id, ingest_date=today)
                for skip in result.skips:
                    skipped[skip.reason.value] += 1
                    logger.debug(
                        "normalizer_row_skipped",
                        source=source,
                        item_id=item_id,
                        column=skip.column,
                        reason=skip.reason.value,
                    )
                pending.extend(result.snapshots)

                if len(pending) >= self._batch_size:
                    await self._append(pending, source)
                    report.snapshots_written += len(pending)
                    pending = []

            if pending:
                await self._append(pending, source)
                report.snapshots_written += len(pending)

        except (RetryExhaustedError, SQLAlchemyError, OSError) as e:
            report.skipped = dict(skipped)
            logger.error(
                "normalizer_run_failed",
                source=source,
                snapshots_written=report.snapshots_written,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise NormalizationFailed(source, str(e)) from e

        report.skipped = dict(skipped)
        if skipped:
            logger.warning("normalizer_rows_skipped", source=source, **report.skipped)
        logger.info(
            "normalizer_run_complete",
            source=source,
            rows_seen=report.rows_seen,
            rows_matched=report.rows_matched,
            snapshots_written=report.snapshots_written,
            skipped=report.skipped_total,
        )
        return report
