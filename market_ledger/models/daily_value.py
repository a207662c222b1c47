"""
Market Ledger — Daily Value Model

One reconciled price per (item, day, currency). Materialized and overwritten
only by the backfill orchestrator; everything else reads it.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import DATE, INTEGER, TIMESTAMP, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from market_ledger.models.base import Base, JSONType


class DailyValue(Base):
    """
    Authoritative daily value.

    The upsert touches only value_cents, confidence, sources_used and method,
    so re-running a day over unchanged snapshots leaves the row identical.
    """

    __tablename__ = "daily_values"

    item_id: Mapped[str] = mapped_column(String, primary_key=True)
    as_of_date: Mapped[date] = mapped_column(DATE, primary_key=True)
    currency: Mapped[str] = mapped_column(String(3), primary_key=True)
    value_cents: Mapped[int] = mapped_column(INTEGER, nullable=False)
    confidence: Mapped[int] = mapped_column(
        INTEGER, nullable=False, comment="Selection strategy quality score"
    )
    sources_used: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, comment="Winning snapshot(s), in rank order"
    )
    method: Mapped[str] = mapped_column(
        String, nullable=False, comment="Selection strategy tag"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_daily_values_date_currency", "as_of_date", "currency"),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyValue item={self.item_id!r} {self.as_of_date} "
            f"{self.value_cents}{self.currency} method={self.method!r}>"
        )
