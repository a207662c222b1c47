"""
Market Ledger — Valuation CSV Exports

Renders valued holdings as CSV with a fixed header per export kind:

    price-lot          every holding, cost vs. market
    high-value-filter  holdings with market_total >= threshold, largest first
    tax-lot            every holding with per-unit cost and ROI
    insurance          holdings with market_total >= threshold, largest first
    movers             holdings priced now and at a baseline, largest absolute
                       line move first, capped at a row limit

Amounts are fixed two-decimal strings in the report currency. Missing values
(unpriced holdings, unknown cost, undefined ROI) are empty cells; movers
rows without both prices, or with a zero baseline, are left out. Quoting is
minimal: only cells containing a comma, quote or line break are quoted.
"""

from __future__ import annotations

import csv
import io
from decimal import ROUND_HALF_UP, Decimal
from typing import IO, Any, Callable, Iterable, Iterator, Mapping, Sequence

import structlog

from market_ledger.config import ExportKind, settings
from market_ledger.engine.portfolio import HoldingMove, HoldingValuation, PriceQuote, rank_moves
from market_ledger.utils.money import format_cents

logger = structlog.get_logger(__name__)

EXPORT_HEADERS: dict[ExportKind, tuple[str, ...]] = {
    ExportKind.PRICE_LOT: (
        "item_id", "game", "card_id", "quantity", "cost_basis_total",
        "market_price_each", "market_value_total", "currency", "market_source",
        "price_as_of", "acquired_at",
    ),
    ExportKind.HIGH_VALUE: (
        "game", "card_id", "quantity", "market_each", "market_total",
        "cost_total", "unrealized_gain", "currency", "market_source",
    ),
    ExportKind.TAX_LOT: (
        "item_id", "game", "card_id", "quantity", "acquired_at", "cost_each",
        "cost_total", "market_each", "market_total", "unrealized_gain",
        "roi_pct", "currency", "market_source",
    ),
    ExportKind.INSURANCE: (
        "game", "card_id", "grade", "quantity", "market_each", "market_total",
        "currency", "source",
    ),
    ExportKind.MOVERS: (
        "item_id", "game", "card_id", "quantity", "from", "to", "change_pct",
        "delta_each", "delta_total", "from_date", "to_date", "currency",
        "to_source", "to_price_type",
    ),
}


# ---------------------------------------------------------------------------
# Cell formatting
# ---------------------------------------------------------------------------


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _fraction_cents(value: Decimal | None) -> str:
    if value is None:
        return ""
    amount = (value / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{amount:.2f}"


def _pct(value: Decimal | None) -> str:
    return "" if value is None else f"{value:.2f}"


def _market_total(v: HoldingValuation) -> str:
    return format_cents(v.market_total_cents) if v.quote is not None else ""


def _gain(v: HoldingValuation) -> str:
    return format_cents(v.gain_cents) if v.quote is not None else ""


def _cost_total(v: HoldingValuation) -> str:
    return format_cents(v.holding.cost_basis_cents)


def _acquired(v: HoldingValuation) -> str:
    acquired = v.holding.acquired_at
    return acquired.date().isoformat() if acquired is not None else ""


def _date(value) -> str:
    return value.isoformat() if value is not None else ""


def _source(v: HoldingValuation) -> str:
    return v.quote.source if v.quote is not None else ""


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------


def _price_lot_row(v: HoldingValuation, currency: str) -> list[str]:
    h = v.holding
    return [
        h.item_id, _text(h.game), _text(h.card_id), str(h.quantity), _cost_total(v),
        format_cents(v.market_each_cents), _market_total(v), currency, _source(v),
        _date(v.quote.as_of_date if v.quote is not None else None), _acquired(v),
    ]


def _high_value_row(v: HoldingValuation, currency: str) -> list[str]:
    h = v.holding
    return [
        _text(h.game), _text(h.card_id), str(h.quantity), format_cents(v.market_each_cents),
        _market_total(v), _cost_total(v), _gain(v), currency, _source(v),
    ]


def _tax_lot_row(v: HoldingValuation, currency: str) -> list[str]:
    h = v.holding
    cost_each = v.cost_each_cents if h.cost_basis_cents is not None else None
    return [
        h.item_id, _text(h.game), _text(h.card_id), str(h.quantity), _acquired(v),
        _fraction_cents(cost_each), _cost_total(v), format_cents(v.market_each_cents),
        _market_total(v), _gain(v), _pct(v.roi_pct) if v.quote is not None else "",
        currency, _source(v),
    ]


def _insurance_row(v: HoldingValuation, currency: str) -> list[str]:
    h = v.holding
    return [
        _text(h.game), _text(h.card_id), _text(h.grade_label), str(h.quantity),
        format_cents(v.market_each_cents), _market_total(v), currency, _source(v),
    ]


def _movers_row(m: HoldingMove, currency: str) -> list[str]:
    h = m.valuation.holding
    to = m.valuation.quote
    return [
        h.item_id, _text(h.game), _text(h.card_id), str(h.quantity),
        format_cents(m.baseline.value_cents), format_cents(to.value_cents), _pct(m.change_pct),
        format_cents(m.delta_each_cents), format_cents(m.delta_total_cents),
        _date(m.baseline.as_of_date), _date(to.as_of_date), currency, to.source,
        _text(to.price_type),
    ]


_ROW_BUILDERS: dict[ExportKind, Callable[[Any, str], list[str]]] = {
    ExportKind.PRICE_LOT: _price_lot_row,
    ExportKind.HIGH_VALUE: _high_value_row,
    ExportKind.TAX_LOT: _tax_lot_row,
    ExportKind.INSURANCE: _insurance_row,
    ExportKind.MOVERS: _movers_row,
}

_FILTERED = {
    ExportKind.HIGH_VALUE: lambda: settings.HIGH_VALUE_THRESHOLD_CENTS,
    ExportKind.INSURANCE: lambda: settings.INSURANCE_THRESHOLD_CENTS,
}


def select_rows(
    kind: ExportKind,
    valuations: Iterable[HoldingValuation],
    threshold_cents: int | None = None,
) -> list[HoldingValuation]:
    """Apply the kind's threshold filter and ordering."""
    rows = list(valuations)
    if kind not in _FILTERED:
        return rows

    threshold = threshold_cents if threshold_cents is not None else _FILTERED[kind]()
    kept = [v for v in rows if v.quote is not None and v.market_total_cents >= threshold]
    return sorted(kept, key=lambda v: (-v.market_total_cents, v.holding.item_id))


def clamp_mover_limit(limit: int | None) -> int:
    if limit is None:
        return settings.MOVERS_DEFAULT_ROWS
    return max(1, min(settings.MOVERS_MAX_ROWS, limit))


def select_movers(
    valuations: Iterable[HoldingValuation],
    baselines: Mapping[str, PriceQuote],
    limit: int | None = None,
) -> list[HoldingMove]:
    """Holdings priced at both ends, largest absolute line move first."""
    return rank_moves(valuations, dict(baselines), limit=clamp_mover_limit(limit))


def iter_csv(
    kind: ExportKind | str,
    valuations: Sequence[HoldingValuation],
    currency: str,
    threshold_cents: int | None = None,
    baselines: Mapping[str, PriceQuote] | None = None,
    limit: int | None = None,
) -> Iterator[str]:
    """
    Yield the export one CSV line at a time, header first.

    `baselines` (item_id -> earlier quote) and `limit` apply to movers only.
    """
    export_kind = ExportKind(kind)
    build = _ROW_BUILDERS[export_kind]
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")

    def _flush(cells: Sequence[str]) -> str:
        writer.writerow(cells)
        line = buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
        return line

    rows: Sequence[Any]
    if export_kind is ExportKind.MOVERS:
        rows = select_movers(valuations, baselines or {}, limit)
    else:
        rows = select_rows(export_kind, valuations, threshold_cents)

    yield _flush(EXPORT_HEADERS[export_kind])
    for row in rows:
        yield _flush(build(row, currency))


def write_csv(
    kind: ExportKind | str,
    valuations: Sequence[HoldingValuation],
    currency: str,
    out: IO[str],
    threshold_cents: int | None = None,
    baselines: Mapping[str, PriceQuote] | None = None,
    limit: int | None = None,
) -> int:
    """Write an export to a text stream. Returns data rows written."""
    rows = -1
    for line in iter_csv(kind, valuations, currency, threshold_cents, baselines, limit):
        out.write(line)
        rows += 1
    logger.info("valuation_export_written", kind=ExportKind(kind).value, rows=rows)
    return rows


def render_csv(
    kind: ExportKind | str,
    valuations: Sequence[HoldingValuation],
    currency: str,
    threshold_cents: int | None = None,
    baselines: Mapping[str, PriceQuote] | None = None,
    limit: int | None = None,
) -> str:
    return "".join(iter_csv(kind, valuations, currency, threshold_cents, baselines, limit))
