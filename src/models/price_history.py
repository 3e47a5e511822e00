"""
TCGMaster — Price History Model

Append-only log of observed prices per card and grade. Every successful
sync with a market price inserts a new row; nothing is ever updated.
Read by the trending engine (24h change and volume) and by cost-basis
lookups.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DECIMAL, TIMESTAMP, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, new_uuid, utcnow


class PriceHistory(Base):
    """
    Append-only price observation.

    Index: (card_id, recorded_at) supports the "two most recent rows" and
    "rows in the trailing 24h" queries.
    """

    __tablename__ = "price_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    card_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cards.id", ondelete="CASCADE"),
        nullable=False,
    )
    variant_id: Mapped[str | None] = mapped_column(String, nullable=True)
    grade: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="raw",
        comment="'raw' or a normalized grade key such as 'psa10'",
    )
    grading_company: Mapped[str | None] = mapped_column(String, nullable=True)
    price: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), nullable=False)
    source: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Data source, e.g. 'ppt-api'",
    )
    confidence: Mapped[Decimal | None] = mapped_column(DECIMAL(4, 3), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        nullable=False,
        comment="UTC timestamp of when this price was recorded",
    )

    __table_args__ = (
        Index("ix_price_history_card_recorded", "card_id", "recorded_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PriceHistory card_id={self.card_id!r} grade={self.grade!r} "
            f"price={self.price} at={self.recorded_at}>"
        )
