"""
Market Ledger — Market Item Model (external catalog reference)

The catalog is owned elsewhere; this subsystem only reads it to resolve a
vendor row's join key (canonical_source + canonical_id) to an item_id.
"""

from __future__ import annotations

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_ledger.models.base import Base


class MarketItem(Base):
    """One catalog item (a card printing) that prices can attach to."""

    __tablename__ = "market_items"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Opaque item identifier"
    )
    game: Mapped[str] = mapped_column(
        String, nullable=False, comment="pokemon, mtg, yugioh, ..."
    )
    canonical_source: Mapped[str] = mapped_column(
        String, nullable=False, comment="Catalog that owns canonical_id, e.g. 'tcgdex'"
    )
    canonical_id: Mapped[str] = mapped_column(
        String, nullable=False, comment="Identifier inside canonical_source"
    )
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    set_name: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "game", "canonical_source", "canonical_id",
            name="uq_market_items_canonical",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<MarketItem id={self.id!r} game={self.game!r} "
            f"canonical={self.canonical_source}:{self.canonical_id}>"
        )
