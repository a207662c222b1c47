"""
Market Ledger — Currency Conversion

Rates are an external concern: this module never fetches them. The default
converter reads a static table (settings.FX_RATES_TO_USD) and converts
through USD. Callers that own a better rate source pass their own
`convert(amount, from_currency, to_currency)` with the same signature.

All money values use Decimal, never float.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Mapping, Optional

import structlog

from market_ledger.config import settings

logger = structlog.get_logger(__name__)

# convert(amount, from_currency, to_currency) -> amount | None
Converter = Callable[[Decimal, str, str], Optional[Decimal]]


def make_static_converter(rates_to_usd: Mapping[str, Decimal]) -> Converter:
    """
    Build a pure converter from a {currency: USD per unit} table.

    Unknown currencies convert to None (the caller treats that as unpriced).
    """
    rates = {code.upper(): Decimal(rate) for code, rate in rates_to_usd.items()}

    def convert(amount: Decimal, from_currency: str, to_currency: str) -> Decimal | None:
        src = from_currency.upper()
        dst = to_currency.upper()
        if src == dst:
            return amount
        if src not in rates or dst not in rates or rates[dst] <= Decimal("0"):
            logger.debug("forex_rate_missing", from_currency=src, to_currency=dst)
            return None

        result = (amount * rates[src] / rates[dst]).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        logger.debug(
            "forex_converted",
            amount=str(amount),
            from_currency=src,
            to_currency=dst,
            result=str(result),
        )
        return result

    return convert


def default_converter() -> Converter:
    """Converter backed by the configured static rate table."""
    return make_static_converter(settings.FX_RATES_TO_USD)
