"""
Market Ledger — Source & Price-Type Priority Tables

Lower number = higher priority. Unknown sources and price types always rank
last. The tables are versioned (settings.PRIORITY_TABLE_VERSION) and live in
memory so ranking can be tested without a database.

Source order:
    tcgplayer < scryfall < cardmarket < pricecharting < ebay < amazon < unknown

Price-type order:
    broad signals (market, trend, mid)
    < rolling averages (avg_7d, avg_30d)
    < range bounds (low, high)
    < condition buckets (loose, cib, new, graded)
    < game-specific variants (foil, etched, tix)
    < anything else
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from market_ledger.config import PriceType, Source

UNKNOWN_SOURCE_PRIORITY: int = 99
UNKNOWN_PRICE_TYPE_PRIORITY: int = 90

SOURCE_PRIORITY: Mapping[str, int] = MappingProxyType({
    Source.TCGPLAYER.value: 10,
    Source.SCRYFALL.value: 20,
    Source.CARDMARKET.value: 30,
    Source.PRICECHARTING.value: 40,
    Source.EBAY.value: 50,
    Source.AMAZON.value: 60,
})

PRICE_TYPE_PRIORITY: Mapping[str, int] = MappingProxyType({
    PriceType.MARKET.value: 10,
    PriceType.TREND.value: 12,
    PriceType.MID.value: 14,
    PriceType.AVG_7D.value: 16,
    PriceType.AVG_30D.value: 18,
    PriceType.LOW.value: 22,
    PriceType.HIGH.value: 24,
    PriceType.LOOSE.value: 30,
    PriceType.CIB.value: 32,
    PriceType.NEW.value: 34,
    PriceType.GRADED.value: 36,
    PriceType.FOIL.value: 60,
    PriceType.ETCHED.value: 62,
    PriceType.TIX.value: 80,
})


def source_priority(source: str) -> int:
    return SOURCE_PRIORITY.get(source, UNKNOWN_SOURCE_PRIORITY)


def price_type_priority(price_type: str) -> int:
    return PRICE_TYPE_PRIORITY.get(price_type, UNKNOWN_PRICE_TYPE_PRIORITY)
