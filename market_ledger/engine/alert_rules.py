"""
Market Ledger — Alert Rule Predicate

    above: fires when price > threshold
    below: fires when price < threshold

A missing price never fires, whatever the rule type. Equality never fires.
"""

from __future__ import annotations

from market_ledger.config import RuleType


def is_triggered(rule_type: str | RuleType, threshold_cents: int, price_cents: int | None) -> bool:
    """
    Decide whether a threshold rule fires for the observed price.

    Unknown rule types never fire.
    """
    if price_cents is None:
        return False

    try:
        kind = RuleType(rule_type)
    except ValueError:
        return False

    if kind is RuleType.ABOVE:
        return price_cents > threshold_cents
    return price_cents < threshold_cents
