"""
Market Ledger — Backfill Orchestrator

Materializes daily values for every day in an inclusive date range, one
currency at a time:

    for day in [start .. end]:
        candidates = latest snapshots per item with as_of_date <= day
        records    = select_for_day(currency, day, candidates)
        upsert records in batches (bounded concurrency)

Days run strictly in ascending order. A day's upserts are idempotent, so a
transiently failing day is simply re-run by the retry policy. A day that
still fails aborts the run with BackfillAborted; every earlier day stays
committed and re-running the same range is always safe.

Range defaults:
    end   = today (UTC)
    start = end - (days - 1), days defaulting to BACKFILL_DEFAULT_DAYS
"""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from typing import Iterator, NamedTuple, Sequence

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_ledger.config import SkipReason, settings
from market_ledger.engine.selector import DailyValueRecord, select_for_day
from market_ledger.errors import BackfillAborted
from market_ledger.pipeline.store import (
    count_tracked_items,
    load_day_candidates,
    upsert_daily_values,
    utc_today,
)
from market_ledger.utils.retry import retry_async

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Date range
# ---------------------------------------------------------------------------


class DateRange(NamedTuple):
    start: date
    end: date

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    @property
    def day_count(self) -> int:
        return (self.end - self.start).days + 1


def resolve_date_range(
    start: date | None = None,
    end: date | None = None,
    days: int | None = None,
    today: date | None = None,
) -> DateRange:
    """
    Resolve CLI-style range arguments into an inclusive DateRange.

    Raises:
        ValueError: start after end, or a non-positive day count.
    """
    end_day = end or today or utc_today()
    if start is None:
        count = days if days is not None else settings.BACKFILL_DEFAULT_DAYS
        if count < 1:
            raise ValueError(f"days must be >= 1, got {count}")
        start = end_day - timedelta(days=count - 1)
    if start > end_day:
        raise ValueError(f"start date {start} is after end date {end_day}")
    return DateRange(start, end_day)


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


class DayResult(BaseModel):
    day: date
    upserted: int
    # Tracked items with no snapshot on or before the day.
    no_candidate: int = 0


class BackfillReport(BaseModel):
    """What a run did (or, for a dry run, would do)."""

    currency: str
    start: date
    end: date
    dry_run: bool = False
    cancelled: bool = False
    days: list[DayResult] = Field(default_factory=list)

    @property
    def planned_days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def completed_days(self) -> int:
        return len(self.days)

    @property
    def total_upserted(self) -> int:
        return sum(d.upserted for d in self.days)

    @property
    def total_no_candidate(self) -> int:
        return sum(d.no_candidate for d in self.days)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class BackfillOrchestrator:
    """
    Replays the selector over a date range and upserts the results.

    Usage:
        orchestrator = BackfillOrchestrator(session_factory)
        report = await orchestrator.run(resolve_date_range(days=90), "USD")

    Call request_stop() (e.g. from a signal handler) to stop cleanly at the
    next day boundary.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_concurrency: int | None = None,
        batch_size: int | None = None,
    ):
        self.session_factory = session_factory
        self._max_concurrency = max(1, max_concurrency or settings.BACKFILL_MAX_CONCURRENCY)
        self._batch_size = max(1, batch_size or settings.BACKFILL_UPSERT_BATCH_SIZE)
        self._stop_event = asyncio.Event()

    def request_stop(self) -> None:
        """Finish the in-flight day, then stop."""
        logger.info("backfill_stop_requested")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def _write_batches(self, records: Sequence[DailyValueRecord]) -> int:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _write(batch: Sequence[DailyValueRecord]) -> int:
            async with semaphore:
                async with self.session_factory() as session:
                    count = await upsert_daily_values(session, batch)
                    await session.commit()
                    return count

        batches = [
            records[i:i + self._batch_size]
            for i in range(0, len(records), self._batch_size)
        ]
        # Let every batch finish before surfacing a failure.
        results = await asyncio.gather(*(_write(b) for b in batches), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return sum(results)  # type: ignore[arg-type]

    async def _count_tracked(self, currency: str, end: date) -> int:
        async with self.session_factory() as session:
            return await count_tracked_items(session, currency, end)

    async def process_day(self, day: date, currency: str) -> int:
        """Select and upsert one day. Returns rows written."""
        async with self.session_factory() as session:
            candidates = await load_day_candidates(session, currency, day)

        records = select_for_day(currency, day, candidates)
        return await self._write_batches(records)

    async def run(
        self,
        date_range: DateRange,
        currency: str | None = None,
        dry_run: bool = False,
    ) -> BackfillReport:
        """
        Backfill every day in `date_range` (inclusive) for one currency.

        Raises:
            BackfillAborted: a day failed after retries. `.report` lists the
                days that completed before it.
        """
        ccy = (currency or settings.DEFAULT_CURRENCY).upper()
        report = BackfillReport(
            currency=ccy, start=date_range.start, end=date_range.end, dry_run=dry_run
        )

        logger.info(
            "backfill_plan",
            start=date_range.start.isoformat(),
            end=date_range.end.isoformat(),
            days=date_range.day_count,
            currency=ccy,
            dry_run=dry_run,
            max_concurrency=self._max_concurrency,
            batch_size=self._batch_size,
            priority_table_version=settings.PRIORITY_TABLE_VERSION,
        )
        if dry_run:
            return report

        tracked = await retry_async(
            lambda: self._count_tracked(ccy, date_range.end),
            operation="backfill_tracked_items",
        )

        for day in date_range.days():
            if self.stop_requested:
                report.cancelled = True
                logger.warning(
                    "backfill_cancelled",
                    next_day=day.isoformat(),
                    completed_days=report.completed_days,
                )
                break

            try:
                upserted = await retry_async(
                    lambda: self.process_day(day, ccy),
                    operation=f"backfill_day:{day.isoformat()}",
                )
            except Exception as e:
                logger.error(
                    "backfill_day_failed",
                    day=day.isoformat(),
                    currency=ccy,
                    completed_days=report.completed_days,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise BackfillAborted(day, report, str(e)) from e

            no_candidate = max(0, tracked - upserted)
            report.days.append(DayResult(day=day, upserted=upserted, no_candidate=no_candidate))
            logger.info(
                "backfill_day_complete",
                day=day.isoformat(),
                currency=ccy,
                upserted=upserted,
                skipped={SkipReason.NO_CANDIDATE.value: no_candidate} if no_candidate else {},
            )

        logger.info(
            "backfill_complete",
            currency=ccy,
            completed_days=report.completed_days,
            total_upserted=report.total_upserted,
            total_no_candidate=report.total_no_candidate,
            priority_table_version=settings.PRIORITY_TABLE_VERSION,
            cancelled=report.cancelled,
        )
        return report
