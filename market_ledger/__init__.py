"""Market Ledger — snapshot normalization, daily reconciliation, alerts and valuation."""

__version__ = "0.1.0"
