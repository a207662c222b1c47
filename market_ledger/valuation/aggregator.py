"""
Market Ledger — Valuation Aggregator

Joins a user's holdings to prices and produces per-holding valuations plus a
portfolio summary:

    1. latest daily value (as_of_date <= valuation day) in the report currency
    2. otherwise the best current snapshot from an allow-listed source,
       converted into the report currency when only a foreign one exists
    3. otherwise unpriced (zero market value, still listed)

For the movers export it also looks up each item's baseline: the daily value
it had N days before the valuation day (N clamped to 1..MOVERS_MAX_DAYS).

Math lives in engine/portfolio.py; this module only does the store joins.
"""

from __future__ import annotations

from datetime import date
from typing import Collection, NamedTuple, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_ledger.config import Source, settings
from market_ledger.engine.portfolio import (
    Holding,
    HoldingValuation,
    PortfolioSummary,
    PriceQuote,
    summarize,
    value_holding,
)
from market_ledger.models.collection_item import CollectionItem
from market_ledger.pipeline.store import (
    daily_quotes,
    get_baseline_daily_values,
    get_latest_daily_values,
    load_item_candidates,
    pick_live_quote,
    utc_today,
)
from market_ledger.utils.forex import Converter, default_converter
from market_ledger.utils.retry import retry_async

logger = structlog.get_logger(__name__)


class ValuationResult(NamedTuple):
    valuations: list[HoldingValuation]
    summary: PortfolioSummary
    as_of: date


def clamp_mover_days(days: int | None) -> int:
    if days is None:
        return settings.MOVERS_DEFAULT_DAYS
    return max(1, min(settings.MOVERS_MAX_DAYS, days))


def holding_from_row(row: CollectionItem) -> Holding:
    return Holding(
        item_id=row.item_id,
        quantity=row.quantity,
        cost_basis_cents=row.cost_basis_cents,
        holding_id=row.id,
        game=row.game,
        card_id=row.card_id,
        grade_label=row.grade_label,
        acquired_at=row.acquired_at,
    )


class ValuationAggregator:
    """
    Values holdings in one report currency.

    Usage:
        aggregator = ValuationAggregator(session_factory, currency="USD")
        result = await aggregator.value_owner("user-123")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        currency: str | None = None,
        allowed_sources: Collection[Source | str] | None = None,
        convert: Converter | None = None,
        top_n: int | None = None,
    ):
        self.session_factory = session_factory
        self.currency = (currency or settings.DEFAULT_CURRENCY).upper()
        sources = allowed_sources if allowed_sources is not None else settings.alert_sources
        self._sources = frozenset(Source(s).value for s in sources)
        self._convert = convert or default_converter()
        self._top_n = top_n or settings.CONCENTRATION_TOP_N

    async def load_holdings(self, owner_id: str) -> list[Holding]:
        async def _load() -> list[Holding]:
            async with self.session_factory() as session:
                stmt = (
                    select(CollectionItem)
                    .where(CollectionItem.owner_id == owner_id)
                    .order_by(CollectionItem.acquired_at, CollectionItem.id)
                )
                rows = (await session.execute(stmt)).scalars().all()
                return [holding_from_row(r) for r in rows]

        return await retry_async(_load, operation=f"holdings_load:{owner_id}")

    async def quotes_for(
        self, item_ids: Collection[str], on: date
    ) -> dict[str, PriceQuote]:
        """Best available per-unit quote for each item, in the report currency."""
        async def _lookup() -> dict[str, PriceQuote]:
            async with self.session_factory() as session:
                daily = await get_latest_daily_values(session, item_ids, self.currency, on)
                quotes = daily_quotes(daily)

                missing = [i for i in item_ids if i not in quotes]
                if not missing:
                    return quotes

                candidates = await load_item_candidates(
                    session, missing, on_or_before=on, sources=self._sources
                )
                for item_id in missing:
                    quote = pick_live_quote(
                        item_id, self.currency, on, candidates, convert=self._convert
                    )
                    if quote is not None:
                        quotes[item_id] = quote
                return quotes

        return await retry_async(_lookup, operation="valuation_quotes")

    async def baselines_for(
        self, item_ids: Collection[str], on: date, days: int | None = None
    ) -> dict[str, PriceQuote]:
        """Daily-value quote per item from `days` before `on` (oldest one as fallback)."""
        window = clamp_mover_days(days)

        async def _lookup() -> dict[str, PriceQuote]:
            async with self.session_factory() as session:
                rows = await get_baseline_daily_values(
                    session, item_ids, self.currency, window, on_or_before=on
                )
                return daily_quotes(rows)

        if not item_ids:
            return {}
        return await retry_async(_lookup, operation="valuation_baselines")

    async def value_holdings(
        self, holdings: Sequence[Holding], on: date | None = None
    ) -> ValuationResult:
        as_of = on or utc_today()
        item_ids = sorted({h.item_id for h in holdings})
        quotes = await self.quotes_for(item_ids, as_of) if item_ids else {}

        valuations = [value_holding(h, quotes.get(h.item_id)) for h in holdings]
        summary = summarize(valuations, self.currency, top_n=self._top_n)

        logger.info(
            "valuation_complete",
            currency=self.currency,
            as_of=as_of.isoformat(),
            holdings=summary.holdings,
            priced_holdings=summary.priced_holdings,
            total_market_cents=summary.total_market_cents,
            total_cost_cents=summary.total_cost_cents,
        )
        if summary.priced_holdings < summary.holdings:
            logger.warning(
                "valuation_unpriced_holdings",
                unpriced=summary.holdings - summary.priced_holdings,
                currency=self.currency,
            )
        return ValuationResult(valuations, summary, as_of)

    async def value_owner(self, owner_id: str, on: date | None = None) -> ValuationResult:
        holdings = await self.load_holdings(owner_id)
        return await self.value_holdings(holdings, on)
