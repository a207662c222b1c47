from market_ledger.engine.alert_rules import is_triggered
from market_ledger.engine.portfolio import summarize, value_holding
from market_ledger.engine.priority import price_type_priority, source_priority
from market_ledger.engine.selector import select_daily_value, select_for_day

__all__ = [
    "is_triggered",
    "price_type_priority",
    "select_daily_value",
    "select_for_day",
    "source_priority",
    "summarize",
    "value_holding",
]
