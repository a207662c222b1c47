"""
Market Ledger — Vendor Feed Descriptions

One VendorFeed per source describes how to read that vendor's raw table:
which column joins to the catalog, which column carries the observation
timestamp, the feed's declared currency, and which columns hold prices
(and of what type).

Rows themselves come from the vendor table in the store, or from a CSV dump
of it (same column names) via load_feed_rows_from_csv().
"""

from __future__ import annotations

import csv
import re
from pathlib import Path
from typing import Any, Iterable

import structlog
from pydantic import BaseModel, Field, field_validator

from market_ledger.config import PriceType, Source

logger = structlog.get_logger(__name__)

# Columns that look like they carry a price, when discovering from a header.
PRICE_COLUMN_PATTERN = re.compile(
    r"price|market|low|mid|high|trend|avg|foil|etched|loose|cib|graded|(^|_)new(_|$)",
    re.IGNORECASE,
)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# First match wins; more specific hints come first ("avg_30" before "avg").
_PRICE_TYPE_HINTS: tuple[tuple[re.Pattern[str], PriceType], ...] = (
    (re.compile(r"avg_?7|7d|seven", re.IGNORECASE), PriceType.AVG_7D),
    (re.compile(r"avg_?30|30d|thirty", re.IGNORECASE), PriceType.AVG_30D),
    (re.compile(r"etched", re.IGNORECASE), PriceType.ETCHED),
    (re.compile(r"foil|holo", re.IGNORECASE), PriceType.FOIL),
    (re.compile(r"tix", re.IGNORECASE), PriceType.TIX),
    (re.compile(r"loose", re.IGNORECASE), PriceType.LOOSE),
    (re.compile(r"cib", re.IGNORECASE), PriceType.CIB),
    (re.compile(r"graded", re.IGNORECASE), PriceType.GRADED),
    (re.compile(r"(^|_)new(_|$)", re.IGNORECASE), PriceType.NEW),
    (re.compile(r"low|min", re.IGNORECASE), PriceType.LOW),
    (re.compile(r"mid|median", re.IGNORECASE), PriceType.MID),
    (re.compile(r"high|max", re.IGNORECASE), PriceType.HIGH),
    (re.compile(r"trend", re.IGNORECASE), PriceType.TREND),
    (re.compile(r"market", re.IGNORECASE), PriceType.MARKET),
)


def infer_price_type(column: str) -> str:
    """
    Guess the price type a column carries from its name.

    Unrecognized columns keep their own name as the type; such types rank
    last in the selector's price-type priority.
    """
    for pattern, price_type in _PRICE_TYPE_HINTS:
        if pattern.search(column):
            return price_type.value
    return column


class VendorFeed(BaseModel):
    """How to turn one vendor's raw rows into price snapshots."""

    source: Source
    table: str = Field(..., description="Raw vendor table (optionally schema-qualified)")
    game: str
    canonical_source: str = Field(..., description="Catalog namespace the item key lives in")
    item_key_column: str
    price_columns: dict[str, str] = Field(
        ..., description="Raw column -> price type"
    )
    updated_column: str | None = None
    condition_column: str | None = None
    game_column: str | None = None
    currency: str = "USD"
    values_in_cents: bool = Field(
        default=False, description="Columns already hold integer minor units"
    )

    @field_validator("table")
    @classmethod
    def _safe_table_name(cls, v: str) -> str:
        parts = v.split(".")
        if len(parts) > 2 or not all(_IDENTIFIER.match(p) for p in parts):
            raise ValueError(f"invalid vendor table name: {v!r}")
        return v

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("price_columns")
    @classmethod
    def _at_least_one_price_column(cls, v: dict[str, str]) -> dict[str, str]:
        if not v:
            raise ValueError("a vendor feed needs at least one price column")
        return v

    @classmethod
    def from_columns(
        cls,
        columns: Iterable[str],
        *,
        source: Source | str,
        table: str,
        game: str,
        canonical_source: str,
        item_key_column: str,
        updated_column: str | None = None,
        condition_column: str | None = None,
        currency: str = "USD",
        **extra: Any,
    ) -> VendorFeed:
        """
        Build a feed from a raw header by treating every price-like column
        as a price column. Key, timestamp and condition columns are excluded.
        """
        reserved = {item_key_column, updated_column, condition_column, extra.get("game_column")}
        price_columns = {
            col: infer_price_type(col)
            for col in columns
            if col not in reserved and PRICE_COLUMN_PATTERN.search(col)
        }
        return cls(
            source=source,
            table=table,
            game=game,
            canonical_source=canonical_source,
            item_key_column=item_key_column,
            price_columns=price_columns,
            updated_column=updated_column,
            condition_column=condition_column,
            currency=currency,
            **extra,
        )


# ---------------------------------------------------------------------------
# Built-in feeds
# ---------------------------------------------------------------------------

FEEDS: dict[Source, VendorFeed] = {
    Source.TCGPLAYER: VendorFeed(
        source=Source.TCGPLAYER,
        table="tcgplayer_prices_raw",
        game="pokemon",
        canonical_source="tcgdex",
        item_key_column="card_id",
        updated_column="updated_at",
        condition_column="condition",
        currency="USD",
        price_columns={
            "market_price": PriceType.MARKET.value,
            "mid_price": PriceType.MID.value,
            "low_price": PriceType.LOW.value,
            "high_price": PriceType.HIGH.value,
        },
    ),
    Source.SCRYFALL: VendorFeed(
        source=Source.SCRYFALL,
        table="scryfall_prices_raw",
        game="mtg",
        canonical_source="scryfall",
        item_key_column="scryfall_id",
        updated_column="updated_at",
        currency="USD",
        price_columns={
            "usd": PriceType.MARKET.value,
            "usd_foil": PriceType.FOIL.value,
            "usd_etched": PriceType.ETCHED.value,
            "tix": PriceType.TIX.value,
        },
    ),
    Source.CARDMARKET: VendorFeed(
        source=Source.CARDMARKET,
        table="cardmarket_prices_raw",
        game="pokemon",
        canonical_source="tcgdex",
        item_key_column="card_id",
        updated_column="updated_at",
        currency="EUR",
        price_columns={
            "trend_price": PriceType.TREND.value,
            "average_sell_price": PriceType.MARKET.value,
            "avg7": PriceType.AVG_7D.value,
            "avg30": PriceType.AVG_30D.value,
            "low_price": PriceType.LOW.value,
            "reverse_holo_trend": PriceType.FOIL.value,
        },
    ),
    Source.PRICECHARTING: VendorFeed(
        source=Source.PRICECHARTING,
        table="pricecharting_prices_raw",
        game="pokemon",
        canonical_source="pricecharting",
        item_key_column="pricecharting_id",
        updated_column="source_date",
        currency="USD",
        values_in_cents=True,
        price_columns={
            "loose_price_cents": PriceType.LOOSE.value,
            "cib_price_cents": PriceType.CIB.value,
            "new_price_cents": PriceType.NEW.value,
            "graded_price_cents": PriceType.GRADED.value,
        },
    ),
    Source.EBAY: VendorFeed(
        source=Source.EBAY,
        table="ebay_sold_prices_raw",
        game="pokemon",
        canonical_source="tcgdex",
        item_key_column="card_id",
        updated_column="captured_at",
        condition_column="condition",
        game_column="game",
        currency="USD",
        price_columns={
            "median_price": PriceType.MARKET.value,
            "min_price": PriceType.LOW.value,
            "max_price": PriceType.HIGH.value,
        },
    ),
    Source.AMAZON: VendorFeed(
        source=Source.AMAZON,
        table="amazon_prices_raw",
        game="pokemon",
        canonical_source="tcgdex",
        item_key_column="card_id",
        updated_column="captured_at",
        condition_column="condition",
        game_column="game",
        currency="USD",
        price_columns={
            "price": PriceType.MARKET.value,
        },
    ),
}


def get_feed(source: Source | str) -> VendorFeed:
    """Look up the built-in feed for a source. Raises KeyError if unknown."""
    return FEEDS[Source(source)]


def load_feed_rows_from_csv(path: str | Path) -> list[dict[str, str]]:
    """Read a CSV dump of a vendor table. Header row names the columns."""
    with open(path, newline="", encoding="utf-8") as fh:
        rows = list(csv.DictReader(fh))
    logger.info("vendor_csv_loaded", path=str(path), rows=len(rows))
    return rows
