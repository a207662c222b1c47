"""
Market Ledger — Portfolio Valuation Tests

Per-holding math, portfolio summary, and the aggregator's price lookup
order (daily value, live fallback, conversion, unpriced).
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from market_ledger.engine.portfolio import Holding, PriceQuote, summarize, value_holding
from market_ledger.models import CollectionItem
from market_ledger.pipeline.backfill import BackfillOrchestrator, DateRange
from market_ledger.utils.forex import make_static_converter
from market_ledger.valuation import ValuationAggregator

ON = date(2025, 1, 5)


def _quote(cents: int, source: str = "tcgplayer") -> PriceQuote:
    return PriceQuote(cents, "USD", source, "market", ON, "daily")


# ---------------------------------------------------------------------------
# Math
# ---------------------------------------------------------------------------


class TestValueHolding:

    def test_market_total_is_each_times_quantity(self) -> None:
        v = value_holding(Holding("item-a", 3, 2400), _quote(1000))

        assert v.market_each_cents == 1000
        assert v.market_total_cents == 3000
        assert v.cost_total_cents == 2400
        assert v.gain_cents == 600
        assert v.roi_pct == Decimal("25.00")

    def test_zero_cost_has_no_roi(self) -> None:
        v = value_holding(Holding("item-a", 1, 0), _quote(500))

        assert v.gain_cents == 500
        assert v.roi_pct is None

    def test_unknown_cost_treated_as_zero(self) -> None:
        v = value_holding(Holding("item-a", 2, None), _quote(500))

        assert v.cost_total_cents == 0
        assert v.roi_pct is None

    def test_unpriced_holding_contributes_nothing(self) -> None:
        v = value_holding(Holding("item-a", 2, 1000), None)

        assert v.market_each_cents is None
        assert v.market_total_cents == 0
        assert v.gain_cents == -1000
        assert v.roi_pct == Decimal("-100.00")

    def test_negative_cost_has_no_roi(self) -> None:
        v = value_holding(Holding("item-a", 1, -500), _quote(1000))

        assert v.gain_cents == 1500
        assert v.roi_pct is None

    def test_cost_each(self) -> None:
        v = value_holding(Holding("item-a", 3, 1000), _quote(1))

        assert v.cost_each_cents == Decimal("333.33")


class TestSummarize:

    def test_totals_and_gain_are_consistent(self) -> None:
        rows = [
            value_holding(Holding("a", 1, 1000), _quote(5000)),
            value_holding(Holding("b", 2, 3000), _quote(1000)),
            value_holding(Holding("c", 1, 500), None),
        ]

        summary = summarize(rows, "USD", top_n=1)

        assert summary.total_market_cents == 7000
        assert summary.total_cost_cents == 4500
        assert summary.gain_cents == summary.total_market_cents - summary.total_cost_cents
        assert summary.holdings == 3
        assert summary.priced_holdings == 2
        assert summary.top_n_share_pct == Decimal("71.43")

    def test_negative_total_cost_has_no_roi(self) -> None:
        rows = [
            value_holding(Holding("a", 1, 200), _quote(300)),
            value_holding(Holding("b", 1, -900), _quote(100)),
        ]

        summary = summarize(rows, "USD")

        assert summary.total_cost_cents == -700
        assert summary.roi_pct is None

    def test_empty_portfolio(self) -> None:
        summary = summarize([], "USD")

        assert summary.total_market_cents == 0
        assert summary.roi_pct is None
        assert summary.top_n_share_pct is None


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


@pytest.fixture
def add_holdings(session_factory):
    async def _add(*rows: CollectionItem) -> None:
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()

    return _add


def _holding_row(holding_id: str, item_id: str, quantity: int = 1, cost: int | None = None) -> CollectionItem:
    return CollectionItem(
        id=holding_id,
        owner_id="owner-1",
        item_id=item_id,
        game="pokemon",
        card_id=f"card-{item_id}",
        quantity=quantity,
        cost_basis_cents=cost,
        acquired_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


class TestValuationAggregator:

    @pytest.mark.asyncio
    async def test_daily_value_preferred(
        self, session_factory, add_snapshots, snapshot, add_holdings
    ) -> None:
        await add_snapshots(snapshot("item-a", 1000, date(2025, 1, 1)))
        await BackfillOrchestrator(session_factory, max_concurrency=1).run(
            DateRange(date(2025, 1, 1), ON), "USD"
        )
        await add_holdings(_holding_row("h1", "item-a", quantity=3, cost=2400))

        result = await ValuationAggregator(session_factory, currency="USD").value_owner("owner-1", ON)

        [valuation] = result.valuations
        assert valuation.quote.basis == "daily"
        assert valuation.market_total_cents == 3000
        assert result.summary.gain_cents == 600
        assert result.as_of == ON

    @pytest.mark.asyncio
    async def test_live_fallback_when_no_daily_value(
        self, session_factory, add_snapshots, snapshot, add_holdings
    ) -> None:
        await add_snapshots(snapshot("item-a", 750, date(2025, 1, 3), source="ebay"))
        await add_holdings(_holding_row("h1", "item-a"))

        result = await ValuationAggregator(session_factory, currency="USD").value_owner("owner-1", ON)

        quote = result.valuations[0].quote
        assert quote.basis == "live"
        assert quote.value_cents == 750
        assert quote.source == "ebay"

    @pytest.mark.asyncio
    async def test_foreign_snapshot_converted(
        self, session_factory, add_snapshots, snapshot, add_holdings
    ) -> None:
        await add_snapshots(snapshot("item-a", 1000, date(2025, 1, 3), source="cardmarket", currency="EUR"))
        await add_holdings(_holding_row("h1", "item-a", quantity=2))
        convert = make_static_converter({"USD": Decimal("1"), "EUR": Decimal("1.10")})

        result = await ValuationAggregator(
            session_factory, currency="USD", convert=convert
        ).value_owner("owner-1", ON)

        assert result.valuations[0].market_each_cents == 1100
        assert result.summary.total_market_cents == 2200

    @pytest.mark.asyncio
    async def test_unpriced_holding_listed_with_zero_value(
        self, session_factory, add_snapshots, snapshot, add_holdings
    ) -> None:
        await add_snapshots(snapshot("item-a", 500, date(2025, 1, 3)))
        await add_holdings(_holding_row("h1", "item-a"), _holding_row("h2", "item-missing", cost=100))

        result = await ValuationAggregator(session_factory, currency="USD").value_owner("owner-1", ON)

        by_item = {v.holding.item_id: v for v in result.valuations}
        assert by_item["item-missing"].quote is None
        assert by_item["item-missing"].market_total_cents == 0
        assert result.summary.holdings == 2
        assert result.summary.priced_holdings == 1

    @pytest.mark.asyncio
    async def test_disallowed_source_not_used_for_fallback(
        self, session_factory, add_snapshots, snapshot, add_holdings
    ) -> None:
        await add_snapshots(snapshot("item-a", 500, date(2025, 1, 3), source="amazon"))
        await add_holdings(_holding_row("h1", "item-a"))

        result = await ValuationAggregator(
            session_factory, currency="USD", allowed_sources=["tcgplayer"]
        ).value_owner("owner-1", ON)

        assert result.valuations[0].quote is None

    @pytest.mark.asyncio
    async def test_owner_without_holdings(self, session_factory) -> None:
        result = await ValuationAggregator(session_factory).value_owner("nobody", ON)

        assert result.valuations == []
        assert result.summary.total_market_cents == 0


class TestMoverBaselines:

    @pytest_asyncio.fixture
    async def backfilled(self, session_factory, add_snapshots, snapshot):
        await add_snapshots(
            snapshot("item-a", 1000, date(2025, 1, 1)),
            snapshot("item-a", 1500, date(2025, 1, 4)),
            snapshot("item-b", 800, date(2025, 1, 4)),
        )
        await BackfillOrchestrator(session_factory, max_concurrency=1).run(
            DateRange(date(2025, 1, 1), ON), "USD"
        )
        return ValuationAggregator(session_factory, currency="USD")

    @pytest.mark.asyncio
    async def test_latest_value_on_or_before_window_start(self, backfilled) -> None:
        baselines = await backfilled.baselines_for(["item-a"], ON, days=2)

        assert baselines["item-a"].value_cents == 1000
        assert baselines["item-a"].as_of_date == date(2025, 1, 3)

    @pytest.mark.asyncio
    async def test_short_series_falls_back_to_oldest_value(self, backfilled) -> None:
        baselines = await backfilled.baselines_for(["item-b"], ON, days=3)

        assert baselines["item-b"].value_cents == 800
        assert baselines["item-b"].as_of_date == date(2025, 1, 4)

    @pytest.mark.asyncio
    async def test_window_is_clamped(self, backfilled) -> None:
        shortest = await backfilled.baselines_for(["item-a"], ON, days=0)
        longest = await backfilled.baselines_for(["item-a"], ON, days=10_000)

        assert shortest["item-a"].as_of_date == date(2025, 1, 4)
        assert longest["item-a"].as_of_date == date(2025, 1, 1)

    @pytest.mark.asyncio
    async def test_items_without_daily_values_are_absent(self, backfilled) -> None:
        assert await backfilled.baselines_for(["item-missing"], ON, days=7) == {}
        assert await backfilled.baselines_for([], ON, days=7) == {}
