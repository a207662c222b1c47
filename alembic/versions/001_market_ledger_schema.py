"""Market ledger schema — market_items, price_snapshots, daily_values, price_alert_rules, collection_items

Revision ID: 001_market_ledger_schema
Revises: None
Create Date: 2025-12-01
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision: str = "001_market_ledger_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- market_items (catalog reference, read-only for the pipeline) ---
    op.create_table(
        "market_items",
        sa.Column("id", sa.String(), primary_key=True, comment="Catalog item id"),
        sa.Column("game", sa.String(), nullable=False, comment="pokemon, mtg, ..."),
        sa.Column("canonical_source", sa.String(), nullable=False, comment="Namespace of canonical_id"),
        sa.Column("canonical_id", sa.String(), nullable=False, comment="Vendor join key"),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("set_name", sa.String(), nullable=True),
        sa.UniqueConstraint("game", "canonical_source", "canonical_id", name="uq_market_items_canonical"),
    )

    # --- price_snapshots (append-only, no uniqueness: history is retained) ---
    op.create_table(
        "price_snapshots",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.String(), nullable=False, comment="market_items.id"),
        sa.Column("source", sa.String(), nullable=False, comment="Vendor: tcgplayer, scryfall, cardmarket, ..."),
        sa.Column("price_type", sa.String(), nullable=False, comment="market, trend, mid, ... or raw column name"),
        sa.Column("condition", sa.String(), nullable=True, comment="Canonical condition qualifier"),
        sa.Column("as_of_date", sa.DATE(), nullable=False, comment="Day the observation is valid for (not ingestion time)"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("value_cents", sa.INTEGER(), nullable=False),
        sa.Column("raw_provenance", JSONB(), nullable=True, comment="Audit only: table/column/raw string"),
        sa.Column(
            "ingested_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("value_cents > 0", name="ck_price_snapshots_positive"),
    )
    op.create_index(
        "ix_price_snapshots_item_currency_date",
        "price_snapshots",
        ["item_id", "currency", "as_of_date"],
    )
    op.create_index(
        "ix_price_snapshots_currency_date",
        "price_snapshots",
        ["currency", "as_of_date"],
    )

    # --- daily_values (sole writer: backfill orchestrator) ---
    op.create_table(
        "daily_values",
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("as_of_date", sa.DATE(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("value_cents", sa.INTEGER(), nullable=False),
        sa.Column("confidence", sa.INTEGER(), nullable=False, comment="Selection method quality score"),
        sa.Column("sources_used", JSONB(), nullable=False, comment="Winning snapshot(s), ordered"),
        sa.Column("method", sa.String(), nullable=False, comment="Selection strategy tag"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("item_id", "as_of_date", "currency"),
    )
    op.create_index("ix_daily_values_date_currency", "daily_values", ["as_of_date", "currency"])

    # --- price_alert_rules (owned by the user-facing app) ---
    op.create_table(
        "price_alert_rules",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("game", sa.String(), nullable=False),
        sa.Column("target_item_id", sa.String(), nullable=False),
        sa.Column(
            "source",
            sa.String(),
            nullable=True,
            comment="Vendor to watch (allow-listed); NULL = reconciled daily value",
        ),
        sa.Column("rule_type", sa.String(), nullable=False, comment="above | below"),
        sa.Column("threshold_cents", sa.INTEGER(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("active", sa.BOOLEAN(), nullable=False, server_default=sa.true()),
        sa.Column("last_triggered_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_price_alert_rules_active", "price_alert_rules", ["active"])

    # --- collection_items (owned by the collection app) ---
    op.create_table(
        "collection_items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=False, comment="market_items.id"),
        sa.Column("game", sa.String(), nullable=True),
        sa.Column("card_id", sa.String(), nullable=True),
        sa.Column("grade_label", sa.String(), nullable=True),
        sa.Column("quantity", sa.INTEGER(), nullable=False, server_default="1"),
        sa.Column(
            "cost_basis_cents",
            sa.INTEGER(),
            nullable=True,
            comment="Total cost for the whole line, not per unit",
        ),
        sa.Column("acquired_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_collection_items_owner", "collection_items", ["owner_id"])


def downgrade() -> None:
    op.drop_index("ix_collection_items_owner", table_name="collection_items")
    op.drop_table("collection_items")
    op.drop_index("ix_price_alert_rules_active", table_name="price_alert_rules")
    op.drop_table("price_alert_rules")
    op.drop_index("ix_daily_values_date_currency", table_name="daily_values")
    op.drop_table("daily_values")
    op.drop_index("ix_price_snapshots_currency_date", table_name="price_snapshots")
    op.drop_index("ix_price_snapshots_item_currency_date", table_name="price_snapshots")
    op.drop_table("price_snapshots")
    op.drop_table("market_items")
