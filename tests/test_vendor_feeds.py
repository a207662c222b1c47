"""
Market Ledger — Vendor Feed Description Tests
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from market_ledger.config import Source
from market_ledger.pipeline.vendor_feeds import (
    FEEDS,
    VendorFeed,
    get_feed,
    infer_price_type,
    load_feed_rows_from_csv,
)


class TestInferPriceType:

    @pytest.mark.parametrize(
        "column, expected",
        [
            ("market_price", "market"),
            ("mid_price", "mid"),
            ("low_price", "low"),
            ("high_price", "high"),
            ("trend_price", "trend"),
            ("avg7", "avg_7d"),
            ("avg_30", "avg_30d"),
            ("usd_foil", "foil"),
            ("usd_etched", "etched"),
            ("tix", "tix"),
            ("loose_price_cents", "loose"),
            ("cib_price_cents", "cib"),
            ("new_price_cents", "new"),
            ("graded_price_cents", "graded"),
        ],
    )
    def test_known_hints(self, column, expected) -> None:
        assert infer_price_type(column) == expected

    def test_unknown_column_keeps_its_name(self) -> None:
        assert infer_price_type("usd") == "usd"
        assert infer_price_type("average_sell_price") == "average_sell_price"


class TestVendorFeed:

    def test_from_columns_discovers_price_columns(self) -> None:
        feed = VendorFeed.from_columns(
            ["card_id", "updated_at", "condition", "market_price", "low_price", "name", "avg30"],
            source="cardmarket",
            table="cardmarket_prices_raw",
            game="pokemon",
            canonical_source="tcgdex",
            item_key_column="card_id",
            updated_column="updated_at",
            condition_column="condition",
            currency="EUR",
        )

        assert feed.source is Source.CARDMARKET
        assert feed.price_columns == {
            "market_price": "market",
            "low_price": "low",
            "avg30": "avg_30d",
        }

    @pytest.mark.parametrize("table", ["prices; DROP TABLE x", "a.b.c", "1abc", ""])
    def test_rejects_unsafe_table_names(self, table) -> None:
        with pytest.raises(ValidationError):
            VendorFeed(
                source="tcgplayer",
                table=table,
                game="pokemon",
                canonical_source="tcgdex",
                item_key_column="card_id",
                price_columns={"market_price": "market"},
            )

    def test_schema_qualified_table_allowed(self) -> None:
        feed = VendorFeed(
            source="tcgplayer",
            table="vendor.tcgplayer_prices_raw",
            game="pokemon",
            canonical_source="tcgdex",
            item_key_column="card_id",
            price_columns={"market_price": "market"},
        )
        assert feed.table == "vendor.tcgplayer_prices_raw"

    def test_requires_price_columns(self) -> None:
        with pytest.raises(ValidationError):
            VendorFeed(
                source="tcgplayer",
                table="t",
                game="pokemon",
                canonical_source="tcgdex",
                item_key_column="card_id",
                price_columns={},
            )

    def test_registry_covers_every_source(self) -> None:
        assert set(FEEDS) == set(Source)
        assert get_feed("cardmarket").currency == "EUR"
        assert get_feed(Source.PRICECHARTING).values_in_cents is True


def test_load_feed_rows_from_csv(tmp_path) -> None:
    path = tmp_path / "tcgplayer.csv"
    path.write_text(
        'card_id,market_price,updated_at\n'
        'sv1-1,"$1,234.56",2025-01-01\n'
        'sv1-2,,2025-01-02\n',
        encoding="utf-8",
    )

    rows = load_feed_rows_from_csv(path)

    assert rows == [
        {"card_id": "sv1-1", "market_price": "$1,234.56", "updated_at": "2025-01-01"},
        {"card_id": "sv1-2", "market_price": "", "updated_at": "2025-01-02"},
    ]
