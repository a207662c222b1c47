"""
Market Ledger — Daily Reconciliation Selector

Pure function: given an item, a currency, a target day and candidate
snapshots, return the single best snapshot as a DailyValueRecord.

Eligibility:
    item_id and currency match, and as_of_date <= target_day.
    Future-dated snapshots never count, which is what makes carry-forward
    safe: a day with no fresh observation resolves to the latest prior one.

Ranking (lexicographic, first key decides):
    1. as_of_date DESC             freshest observation wins
    2. source priority ASC         see engine/priority.py
    3. price-type priority ASC
    4. value_cents DESC            equally authoritative disagreement -> higher
    5. condition, snapshot_id ASC  stable order for otherwise identical rows

The current strategy ("priority_fallback") always records exactly one
snapshot in sources_used and carries a constant confidence.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, NamedTuple

import structlog

from market_ledger.config import settings
from market_ledger.engine.priority import price_type_priority, source_priority

logger = structlog.get_logger(__name__)


class SnapshotRecord(NamedTuple):
    """Plain, detached view of one PriceSnapshot row."""
    item_id: str
    source: str
    price_type: str
    condition: str | None
    as_of_date: date
    currency: str
    value_cents: int
    snapshot_id: int | None = None


class DailyValueRecord(NamedTuple):
    """Selector output, shaped like a daily_values row."""
    item_id: str
    as_of_date: date
    currency: str
    value_cents: int
    confidence: int
    sources_used: list[dict[str, Any]]
    method: str

    def as_row(self) -> dict[str, Any]:
        return self._asdict()


def rank_key(snapshot: SnapshotRecord) -> tuple[int, int, int, int, str, int]:
    """Sort key: ascending order puts the winning snapshot first."""
    return (
        -snapshot.as_of_date.toordinal(),
        source_priority(snapshot.source),
        price_type_priority(snapshot.price_type),
        -snapshot.value_cents,
        snapshot.condition or "",
        snapshot.snapshot_id if snapshot.snapshot_id is not None else 0,
    )


def is_eligible(
    snapshot: SnapshotRecord, item_id: str, currency: str, target_day: date
) -> bool:
    return (
        snapshot.item_id == item_id
        and snapshot.currency == currency
        and snapshot.as_of_date <= target_day
        and snapshot.value_cents > 0
    )


def describe_source(snapshot: SnapshotRecord) -> dict[str, Any]:
    """sources_used entry. snapshot_date may predate the daily row (carry-forward)."""
    return {
        "source": snapshot.source,
        "price_type": snapshot.price_type,
        "condition": snapshot.condition,
        "value_cents": snapshot.value_cents,
        "snapshot_date": snapshot.as_of_date.isoformat(),
    }


def select_daily_value(
    item_id: str,
    currency: str,
    target_day: date,
    candidates: Iterable[SnapshotRecord],
) -> DailyValueRecord | None:
    """
    Pick the authoritative value for (item_id, currency, target_day).

    Args:
        item_id: Catalog item identifier.
        currency: ISO currency code; only same-currency snapshots are eligible.
        target_day: The day being materialized.
        candidates: Snapshots to consider. Ineligible ones are ignored.

    Returns:
        DailyValueRecord, or None when no candidate is eligible (the caller
        then leaves any existing row for that day untouched).
    """
    eligible = [c for c in candidates if is_eligible(c, item_id, currency, target_day)]
    if not eligible:
        return None

    winner = min(eligible, key=rank_key)

    return DailyValueRecord(
        item_id=item_id,
        as_of_date=target_day,
        currency=currency,
        value_cents=winner.value_cents,
        confidence=settings.SELECTION_CONFIDENCE_PRIORITY_FALLBACK,
        sources_used=[describe_source(winner)],
        method=settings.SELECTION_METHOD_PRIORITY_FALLBACK,
    )


def select_for_day(
    currency: str,
    target_day: date,
    candidates: Iterable[SnapshotRecord],
) -> list[DailyValueRecord]:
    """
    Run the selector for every item present in `candidates`.

    Output is ordered by item_id so batches are reproducible.
    """
    by_item: dict[str, list[SnapshotRecord]] = {}
    for snapshot in candidates:
        by_item.setdefault(snapshot.item_id, []).append(snapshot)

    results: list[DailyValueRecord] = []
    for item_id in sorted(by_item):
        record = select_daily_value(item_id, currency, target_day, by_item[item_id])
        if record is not None:
            results.append(record)

    logger.debug(
        "selector_day_evaluated",
        day=target_day.isoformat(),
        currency=currency,
        items_seen=len(by_item),
        items_selected=len(results),
    )
    return results
