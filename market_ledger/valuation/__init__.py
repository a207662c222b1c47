from market_ledger.valuation.aggregator import ValuationAggregator, ValuationResult
from market_ledger.valuation.exports import EXPORT_HEADERS, iter_csv, render_csv, write_csv

__all__ = [
    "EXPORT_HEADERS",
    "ValuationAggregator",
    "ValuationResult",
    "iter_csv",
    "render_csv",
    "write_csv",
]
