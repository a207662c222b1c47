"""
Tests for cents/amount conversion and formatting.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from market_ledger.utils.money import amount_to_cents, cents_to_amount, format_cents


@pytest.mark.parametrize(
    "amount, cents",
    [
        (Decimal("12.34"), 1234),
        (Decimal("12.345"), 1235),
        (Decimal("12.344"), 1234),
        (Decimal("0.005"), 1),
        (Decimal("7"), 700),
    ],
)
def test_amount_to_cents_rounds_half_up(amount, cents) -> None:
    assert amount_to_cents(amount) == cents


def test_cents_to_amount() -> None:
    assert cents_to_amount(1234) == Decimal("12.34")
    assert cents_to_amount(5) == Decimal("0.05")


@pytest.mark.parametrize(
    "cents, text",
    [(3000, "30.00"), (5, "0.05"), (0, "0.00"), (-900, "-9.00"), (None, "")],
)
def test_format_cents(cents, text) -> None:
    assert format_cents(cents) == text
