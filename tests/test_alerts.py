"""
Market Ledger — Price Alert Tests

Threshold predicate, price resolution per rule source, notification
isolation, and last_triggered_at stamping.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from market_ledger.engine.alert_rules import is_triggered
from market_ledger.models import PriceAlertRule
from market_ledger.pipeline.alerts import AlertContext, AlertEvaluator, describe_alert
from market_ledger.pipeline.backfill import BackfillOrchestrator, DateRange

NOW = datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


# ---------------------------------------------------------------------------
# Predicate
# ---------------------------------------------------------------------------


class TestIsTriggered:

    @pytest.mark.parametrize(
        "rule_type, threshold, price, expected",
        [
            ("above", 10000, 15000, True),
            ("below", 10000, 15000, False),
            ("below", 10000, 9999, True),
            ("above", 10000, 9999, False),
            ("above", 10000, 10000, False),
            ("below", 10000, 10000, False),
            ("above", 10000, None, False),
            ("below", 10000, None, False),
            ("sideways", 10000, 15000, False),
        ],
    )
    def test_predicate(self, rule_type, threshold, price, expected) -> None:
        assert is_triggered(rule_type, threshold, price) is expected


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


@pytest.fixture
def add_rules(session_factory):
    async def _add(*rules: PriceAlertRule) -> None:
        async with session_factory() as session:
            session.add_all(rules)
            await session.commit()

    return _add


def _rule(rule_id: int, item_id: str = "item-1", **overrides) -> PriceAlertRule:
    fields = dict(
        id=rule_id,
        user_id="user-1",
        game="pokemon",
        target_item_id=item_id,
        source=None,
        rule_type="above",
        threshold_cents=10000,
        currency="USD",
        active=True,
    )
    fields.update(overrides)
    return PriceAlertRule(**fields)


async def _stamps(session_factory) -> dict[int, datetime | None]:
    async with session_factory() as session:
        rows = (await session.execute(select(PriceAlertRule))).scalars().all()
    return {r.id: r.last_triggered_at for r in rows}


class TestAlertEvaluator:

    @pytest.mark.asyncio
    async def test_daily_value_rule_fires_and_stamps(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(snapshot("item-1", 15000, date(2025, 1, 4)))
        await BackfillOrchestrator(session_factory, max_concurrency=1).run(
            DateRange(date(2025, 1, 4), date(2025, 1, 5)), "USD"
        )
        await add_rules(_rule(1))
        notify = AsyncMock(return_value=True)

        report = await AlertEvaluator(session_factory, notify=notify, clock=_clock).run()

        assert report.evaluated == 1
        assert report.fired == 1
        context = notify.await_args.args[0]
        assert context.rule_id == 1
        assert context.price_cents == 15000
        assert context.price_as_of == date(2025, 1, 5)
        assert context.fired_at == NOW
        assert (await _stamps(session_factory))[1] is not None

    @pytest.mark.asyncio
    async def test_not_triggered_is_not_stamped(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(snapshot("item-1", 9000, date(2025, 1, 4), source="ebay"))
        await add_rules(_rule(1, source="ebay"))
        notify = AsyncMock(return_value=True)

        report = await AlertEvaluator(session_factory, notify=notify, clock=_clock).run()

        assert report.not_triggered == 1
        notify.assert_not_awaited()
        assert (await _stamps(session_factory))[1] is None

    @pytest.mark.asyncio
    async def test_allow_listed_source_uses_that_source_only(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(
            snapshot("item-1", 20000, date(2025, 1, 5), source="tcgplayer"),
            snapshot("item-1", 8000, date(2025, 1, 3), source="ebay"),
        )
        await add_rules(_rule(1, source="ebay", rule_type="below"))
        notify = AsyncMock(return_value=True)

        report = await AlertEvaluator(
            session_factory, notify=notify, allowed_sources=["ebay"], clock=_clock
        ).run()

        assert report.fired == 1
        context = notify.await_args.args[0]
        assert context.price_cents == 8000
        assert context.source == "ebay"

    @pytest.mark.asyncio
    async def test_source_outside_allow_list_is_skipped(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(snapshot("item-1", 20000, date(2025, 1, 5), source="amazon"))
        await add_rules(_rule(1, source="amazon"))
        notify = AsyncMock(return_value=True)

        report = await AlertEvaluator(
            session_factory, notify=notify, allowed_sources=["tcgplayer", "ebay"], clock=_clock
        ).run()

        assert report.skipped == {"source_not_allowed": 1}
        notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_price_is_skipped(self, session_factory, add_rules) -> None:
        await add_rules(_rule(1), _rule(2, source="tcgplayer"))
        notify = AsyncMock(return_value=True)

        report = await AlertEvaluator(session_factory, notify=notify, clock=_clock).run()

        assert report.skipped == {"no_price": 2}
        assert report.fired == 0

    @pytest.mark.asyncio
    async def test_future_snapshot_is_not_current(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(snapshot("item-1", 50000, date(2025, 1, 9), source="tcgplayer"))
        await add_rules(_rule(1, source="tcgplayer"))

        report = await AlertEvaluator(
            session_factory, notify=AsyncMock(return_value=True), clock=_clock
        ).run()

        assert report.skipped == {"no_price": 1}

    @pytest.mark.asyncio
    async def test_notifier_error_isolated_per_rule(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(
            snapshot("item-1", 15000, date(2025, 1, 5), source="tcgplayer"),
            snapshot("item-2", 15000, date(2025, 1, 5), source="tcgplayer"),
        )
        await add_rules(
            _rule(1, source="tcgplayer"),
            _rule(2, item_id="item-2", source="tcgplayer"),
        )
        notify = AsyncMock(side_effect=[RuntimeError("webhook down"), True])

        report = await AlertEvaluator(session_factory, notify=notify, clock=_clock).run()

        assert report.failed == 1
        assert report.fired == 1
        stamps = await _stamps(session_factory)
        assert stamps[1] is None
        assert stamps[2] is not None

    @pytest.mark.asyncio
    async def test_undelivered_alert_is_not_stamped(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(snapshot("item-1", 15000, date(2025, 1, 5), source="tcgplayer"))
        await add_rules(_rule(1, source="tcgplayer"))

        report = await AlertEvaluator(
            session_factory, notify=AsyncMock(return_value=False), clock=_clock
        ).run()

        assert report.failed == 1
        assert report.fired == 0
        assert (await _stamps(session_factory))[1] is None

    @pytest.mark.asyncio
    async def test_refires_on_every_scan(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(snapshot("item-1", 15000, date(2025, 1, 5), source="tcgplayer"))
        await add_rules(_rule(1, source="tcgplayer"))
        notify = AsyncMock(return_value=True)
        evaluator = AlertEvaluator(session_factory, notify=notify, clock=_clock)

        await evaluator.run()
        await evaluator.run()

        assert notify.await_count == 2

    @pytest.mark.asyncio
    async def test_inactive_rules_ignored(
        self, session_factory, add_snapshots, snapshot, add_rules
    ) -> None:
        await add_snapshots(snapshot("item-1", 15000, date(2025, 1, 5), source="tcgplayer"))
        await add_rules(_rule(1, source="tcgplayer", active=False))
        notify = AsyncMock(return_value=True)

        report = await AlertEvaluator(session_factory, notify=notify, clock=_clock).run()

        assert report.evaluated == 0
        notify.assert_not_awaited()


def test_describe_alert_is_json_safe() -> None:
    context = AlertContext(
        rule_id=3, user_id="u", game="mtg", item_id="i", source=None,
        rule_type="below", threshold_cents=500, price_cents=450, currency="USD",
        price_as_of=date(2025, 1, 5), fired_at=NOW,
    )

    described = describe_alert(context)

    assert described["source"] == "daily"
    assert described["price_as_of"] == "2025-01-05"
    assert described["fired_at"] == NOW.isoformat()
