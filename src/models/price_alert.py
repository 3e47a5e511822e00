"""
TCGMaster — Price Alert Model

A user's standing request to be told when a card moves by a percentage.
Alerts are edge-triggered against a moving baseline: every time one fires,
baseline_price is reset to the price that fired it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BOOLEAN, DECIMAL, TIMESTAMP, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, new_uuid, utcnow


class PriceAlert(Base):
    """Standing percent-change alert on one card/grade."""

    __tablename__ = "price_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
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
        comment="'raw' or a grade key such as 'psa10'",
    )
    grading_company: Mapped[str | None] = mapped_column(String, nullable=True)
    threshold_percent: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), nullable=False)
    direction: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="both",
        comment="up | down | both",
    )
    baseline_price: Mapped[Decimal | None] = mapped_column(DECIMAL(12, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=True)
    last_triggered: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    trigger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivery_method: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="email",
        comment="email | push | both",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_price_alerts_user", "user_id"),
        Index("ix_price_alerts_active", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<PriceAlert id={self.id!r} card_id={self.card_id!r} grade={self.grade!r} "
            f"threshold={self.threshold_percent} direction={self.direction!r} "
            f"baseline={self.baseline_price} active={self.is_active}>"
        )
