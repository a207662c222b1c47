"""
Market Ledger — Condition Canonicalization

Vendors spell the same condition many ways ("Near Mint", "NM", "near_mint",
"NM-M"). Snapshots store one canonical tag so condition-specific lookups
match across feeds. Grader labels ("psa 10", "BGS 9.5") are kept, upper-cased
with single spacing. Anything unrecognized is stored trimmed, as given.
"""

from __future__ import annotations

import re
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


class Condition(str, Enum):
    """Canonical raw-card condition tags."""
    NEAR_MINT = "NM"
    LIGHTLY_PLAYED = "LP"
    MODERATELY_PLAYED = "MP"
    HEAVILY_PLAYED = "HP"
    DAMAGED = "DMG"


_CONDITION_ALIASES: dict[str, Condition] = {
    "MINT": Condition.NEAR_MINT,
    "MT": Condition.NEAR_MINT,
    "NEAR MINT": Condition.NEAR_MINT,
    "NM": Condition.NEAR_MINT,
    "NM-M": Condition.NEAR_MINT,
    "NM/M": Condition.NEAR_MINT,
    "EXCELLENT": Condition.LIGHTLY_PLAYED,
    "EXC": Condition.LIGHTLY_PLAYED,
    "EX": Condition.LIGHTLY_PLAYED,
    "LIGHTLY PLAYED": Condition.LIGHTLY_PLAYED,
    "LIGHT PLAYED": Condition.LIGHTLY_PLAYED,
    "LP": Condition.LIGHTLY_PLAYED,
    "GOOD": Condition.MODERATELY_PLAYED,
    "GD": Condition.MODERATELY_PLAYED,
    "MODERATELY PLAYED": Condition.MODERATELY_PLAYED,
    "MP": Condition.MODERATELY_PLAYED,
    "PLAYED": Condition.HEAVILY_PLAYED,
    "PL": Condition.HEAVILY_PLAYED,
    "HEAVILY PLAYED": Condition.HEAVILY_PLAYED,
    "HP": Condition.HEAVILY_PLAYED,
    "POOR": Condition.DAMAGED,
    "PO": Condition.DAMAGED,
    "DAMAGED": Condition.DAMAGED,
    "DMG": Condition.DAMAGED,
}

_GRADERS = ("PSA", "BGS", "CGC", "SGC", "TAG")
_GRADE_LABEL = re.compile(r"^(%s)\s*(\d{1,2}(?:\.\d)?)$" % "|".join(_GRADERS))
_SEPARATORS = re.compile(r"[\s_]+")


def normalize_condition(raw: object) -> str | None:
    """
    Canonicalize a vendor condition qualifier.

    Returns None for missing/blank input (condition is optional).
    """
    if raw is None:
        return None
    text = _SEPARATORS.sub(" ", str(raw)).strip()
    if not text:
        return None

    key = text.upper()
    if key in _CONDITION_ALIASES:
        return _CONDITION_ALIASES[key].value

    graded = _GRADE_LABEL.match(key)
    if graded:
        return f"{graded.group(1)} {graded.group(2)}"

    logger.debug("condition_unrecognized", raw=text)
    return text
