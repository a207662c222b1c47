"""
Market Ledger — Collection Item Model (external, read-only)

A user's held quantity of a catalog item. Owned by the collection app;
the valuation export only reads it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import INTEGER, TIMESTAMP, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from market_ledger.models.base import Base


class CollectionItem(Base):
    """One holding line in a user's collection."""

    __tablename__ = "collection_items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False)
    item_id: Mapped[str] = mapped_column(String, nullable=False, comment="market_items.id")
    game: Mapped[str | None] = mapped_column(String, nullable=True)
    card_id: Mapped[str | None] = mapped_column(String, nullable=True)
    grade_label: Mapped[str | None] = mapped_column(String, nullable=True)
    quantity: Mapped[int] = mapped_column(INTEGER, nullable=False, default=1)
    cost_basis_cents: Mapped[int | None] = mapped_column(
        INTEGER, nullable=True, comment="Total cost for the whole line, not per unit"
    )
    acquired_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_collection_items_owner", "owner_id"),
    )

    def __repr__(self) -> str:
        return f"<CollectionItem owner={self.owner_id!r} item={self.item_id!r} qty={self.quantity}>"
