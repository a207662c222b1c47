"""
Market Ledger — Price Alert Rule Model

Rules are created by the user-facing application. The alert scan only reads
them and stamps last_triggered_at when one fires; it never deletes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BOOLEAN, INTEGER, TIMESTAMP, Index, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from market_ledger.models.base import Base, BigIntPK


class PriceAlertRule(Base):
    """Threshold rule: fire when an item's price goes above/below a line."""

    __tablename__ = "price_alert_rules"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    game: Mapped[str] = mapped_column(String, nullable=False)
    target_item_id: Mapped[str] = mapped_column(String, nullable=False)
    source: Mapped[str | None] = mapped_column(
        String,
        nullable=True,
        comment="Vendor to watch (allow-listed); NULL = reconciled daily value",
    )
    rule_type: Mapped[str] = mapped_column(String, nullable=False, comment="above | below")
    threshold_cents: Mapped[int] = mapped_column(INTEGER, nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD", server_default="USD"
    )
    active: Mapped[bool] = mapped_column(
        BOOLEAN, nullable=False, default=True, server_default=true()
    )
    last_triggered_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_price_alert_rules_active", "active"),
    )

    def __repr__(self) -> str:
        return (
            f"<PriceAlertRule id={self.id!r} item={self.target_item_id!r} "
            f"{self.rule_type} {self.threshold_cents} via {self.source!r}>"
        )
