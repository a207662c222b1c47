"""
Market Ledger — Error Taxonomy

Data-quality problems are NOT exceptions; they are reported as SkipReason
values (see config.SkipReason). Exceptions here are reserved for conditions
that end a run or a vendor ingestion.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all Market Ledger errors."""


class ConfigurationError(LedgerError):
    """Required configuration is missing or malformed. Fatal before any work."""


class TransientStoreError(LedgerError):
    """The relational store was temporarily unreachable."""


class RetryExhaustedError(LedgerError):
    """A transient failure persisted through every retry attempt."""

    def __init__(self, operation: str, attempts: int) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} failed after {attempts} attempts")


class NormalizationFailed(LedgerError):
    """One vendor's ingestion run failed. Other vendors are unaffected."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        super().__init__(f"normalization for {source!r} failed: {reason}")


class BackfillAborted(LedgerError):
    """
    A backfill run stopped on a failing day.

    Days before the failing one stay committed; `report` describes them.
    """

    def __init__(self, day: Any, report: Any, reason: str) -> None:
        self.day = day
        self.report = report
        super().__init__(f"backfill aborted on {day}: {reason}")
