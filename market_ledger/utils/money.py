"""
Market Ledger — Money Helpers

Integer cents in the store, Decimal everywhere a fraction appears.
Never float.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_TWO_DP = Decimal("0.01")
_HUNDRED = Decimal("100")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(_TWO_DP, rounding=ROUND_HALF_UP)


def cents_to_amount(cents: int) -> Decimal:
    """1234 -> Decimal('12.34')"""
    return quantize(Decimal(cents) / _HUNDRED)


def amount_to_cents(amount: Decimal) -> int:
    """Decimal('12.345') -> 1235 (half-up, like round(x * 100))."""
    return int((amount * _HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(cents: int | None) -> str:
    """Render cents as a fixed 2dp string; None renders empty."""
    if cents is None:
        return ""
    return f"{cents_to_amount(cents):.2f}"
