"""
Market Ledger — Portfolio Valuation Math

Pure arithmetic over (holding, quote) pairs. The store joins live in
valuation/aggregator.py.

    market_total = value_each × quantity
    cost_total   = cost_basis_cents (already a line total)
    gain         = market_total − cost_total
    ROI%         = gain / cost × 100   (None unless cost > 0)
    top-N share  = Σ market_total of the N largest lines / Σ market_total × 100
    move         = current each − baseline each   (None unless baseline > 0)
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple

_TWO_DP = Decimal("0.01")
_HUNDRED = Decimal("100")


class Holding(NamedTuple):
    """One owned line: an item, how many, and what it cost in total."""
    item_id: str
    quantity: int
    cost_basis_cents: int | None
    holding_id: str | None = None
    game: str | None = None
    card_id: str | None = None
    grade_label: str | None = None
    acquired_at: datetime | None = None


class PriceQuote(NamedTuple):
    """Per-unit price used for a holding, with where it came from."""
    value_cents: int
    currency: str
    source: str
    price_type: str | None
    as_of_date: date | None
    basis: str  # "daily" (materialized) or "live" (snapshot fallback)


class HoldingValuation(NamedTuple):
    holding: Holding
    quote: PriceQuote | None
    market_each_cents: int | None
    market_total_cents: int
    cost_total_cents: int
    gain_cents: int
    roi_pct: Decimal | None

    @property
    def cost_each_cents(self) -> Decimal | None:
        if self.holding.quantity <= 0:
            return None
        return (Decimal(self.cost_total_cents) / Decimal(self.holding.quantity)).quantize(
            _TWO_DP, rounding=ROUND_HALF_UP
        )


class PortfolioSummary(NamedTuple):
    currency: str
    holdings: int
    priced_holdings: int
    total_market_cents: int
    total_cost_cents: int
    gain_cents: int
    roi_pct: Decimal | None
    top_n: int
    top_n_share_pct: Decimal | None


def _pct(numerator: int, denominator: int) -> Decimal | None:
    if denominator <= 0:
        return None
    return (Decimal(numerator) / Decimal(denominator) * _HUNDRED).quantize(
        _TWO_DP, rounding=ROUND_HALF_UP
    )


def value_holding(holding: Holding, quote: PriceQuote | None) -> HoldingValuation:
    """Value one holding. An unpriced holding contributes zero market value."""
    quantity = max(0, holding.quantity)
    each = quote.value_cents if quote is not None else None
    market_total = (each or 0) * quantity
    cost_total = holding.cost_basis_cents or 0
    gain = market_total - cost_total

    return HoldingValuation(
        holding=holding,
        quote=quote,
        market_each_cents=each,
        market_total_cents=market_total,
        cost_total_cents=cost_total,
        gain_cents=gain,
        roi_pct=_pct(gain, cost_total),
    )


def summarize(
    valuations: Iterable[HoldingValuation],
    currency: str,
    top_n: int = 10,
) -> PortfolioSummary:
    """Portfolio totals and top-N concentration."""
    rows = list(valuations)
    total_market = sum(v.market_total_cents for v in rows)
    total_cost = sum(v.cost_total_cents for v in rows)
    gain = total_market - total_cost

    largest = sorted((v.market_total_cents for v in rows), reverse=True)[:top_n]

    return PortfolioSummary(
        currency=currency,
        holdings=len(rows),
        priced_holdings=sum(1 for v in rows if v.quote is not None),
        total_market_cents=total_market,
        total_cost_cents=total_cost,
        gain_cents=gain,
        roi_pct=_pct(gain, total_cost),
        top_n=top_n,
        top_n_share_pct=_pct(sum(largest), total_market),
    )


class HoldingMove(NamedTuple):
    """Price change of one holding between a baseline quote and its current quote."""
    valuation: HoldingValuation
    baseline: PriceQuote
    delta_each_cents: int
    delta_total_cents: int
    change_pct: Decimal | None


def move_holding(valuation: HoldingValuation, baseline: PriceQuote | None) -> HoldingMove | None:
    """None when either side is unpriced or the baseline is not positive."""
    quote = valuation.quote
    if quote is None or baseline is None or baseline.value_cents <= 0:
        return None
    delta_each = quote.value_cents - baseline.value_cents
    return HoldingMove(
        valuation=valuation,
        baseline=baseline,
        delta_each_cents=delta_each,
        delta_total_cents=delta_each * max(0, valuation.holding.quantity),
        change_pct=_pct(delta_each, baseline.value_cents),
    )


def rank_moves(
    valuations: Iterable[HoldingValuation],
    baselines: dict[str, PriceQuote],
    limit: int | None = None,
) -> list[HoldingMove]:
    """Largest absolute line move first; ties by item_id."""
    moves = [
        m for m in (move_holding(v, baselines.get(v.holding.item_id)) for v in valuations)
        if m is not None
    ]
    moves.sort(key=lambda m: (-abs(m.delta_total_cents), m.valuation.holding.item_id))
    return moves if limit is None else moves[:limit]
