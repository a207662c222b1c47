"""
Models package — export all SQLAlchemy models.
"""

from market_ledger.models.base import Base
from market_ledger.models.collection_item import CollectionItem
from market_ledger.models.daily_value import DailyValue
from market_ledger.models.market_item import MarketItem
from market_ledger.models.price_alert import PriceAlertRule
from market_ledger.models.price_snapshot import PriceSnapshot

__all__ = [
    "Base",
    "CollectionItem",
    "DailyValue",
    "MarketItem",
    "PriceAlertRule",
    "PriceSnapshot",
]
