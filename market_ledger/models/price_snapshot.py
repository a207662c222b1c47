"""
Market Ledger — Price Snapshot Model (Canonical Snapshot Store)

Append-only log of normalized vendor observations. Never updated, never
deduplicated: re-ingesting an unchanged observation adds another row, and
the selector is what makes re-runs idempotent.

Sole writer: pipeline/normalizer.py.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import DATE, INTEGER, TIMESTAMP, CheckConstraint, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from market_ledger.engine.selector import SnapshotRecord
from market_ledger.models.base import Base, BigIntPK, JSONType


class PriceSnapshot(Base):
    """
    One immutable, dated price observation for one item from one source.

    Absent observations are never stored; value_cents is always > 0.
    """

    __tablename__ = "price_snapshots"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(
        String, nullable=False, comment="market_items.id"
    )
    source: Mapped[str] = mapped_column(
        String, nullable=False, comment="Vendor: tcgplayer, scryfall, cardmarket, ..."
    )
    price_type: Mapped[str] = mapped_column(
        String, nullable=False, comment="market, trend, mid, ... or raw column name"
    )
    condition: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Canonical condition qualifier"
    )
    as_of_date: Mapped[date] = mapped_column(
        DATE, nullable=False, comment="Day the observation is valid for (not ingestion time)"
    )
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD", server_default="USD"
    )
    value_cents: Mapped[int] = mapped_column(INTEGER, nullable=False)
    raw_provenance: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True, comment="Audit only: table/column/raw string"
    )
    ingested_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("value_cents > 0", name="ck_price_snapshots_positive"),
        Index("ix_price_snapshots_item_currency_date", "item_id", "currency", "as_of_date"),
        Index("ix_price_snapshots_currency_date", "currency", "as_of_date"),
    )

    def to_record(self) -> SnapshotRecord:
        """Detach into the plain record the selector ranks."""
        return SnapshotRecord(
            item_id=self.item_id,
            source=self.source,
            price_type=self.price_type,
            condition=self.condition,
            as_of_date=self.as_of_date,
            currency=self.currency,
            value_cents=self.value_cents,
            snapshot_id=self.id,
        )

    def __repr__(self) -> str:
        return (
            f"<PriceSnapshot item={self.item_id!r} source={self.source!r} "
            f"type={self.price_type!r} {self.value_cents}{self.currency} on {self.as_of_date}>"
        )
