"""
TCGMaster — Trending Score Model

One row per card, replaced wholesale on every trending recomputation.
Stores the raw 24h metrics, their normalized [0, 1] components and the
combined weighted score.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DECIMAL, TIMESTAMP, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, new_uuid, utcnow


class TrendingScore(Base):
    """Derived trending signal for a single card."""

    __tablename__ = "trending_scores"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    card_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cards.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    price_change_24h: Mapped[Decimal] = mapped_column(
        DECIMAL(10, 2), nullable=False, default=Decimal("0"), comment="Percent"
    )
    volume_24h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    search_count_24h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    social_mentions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_component: Mapped[Decimal] = mapped_column(DECIMAL(6, 4), nullable=False, default=Decimal("0"))
    volume_component: Mapped[Decimal] = mapped_column(DECIMAL(6, 4), nullable=False, default=Decimal("0"))
    search_component: Mapped[Decimal] = mapped_column(DECIMAL(6, 4), nullable=False, default=Decimal("0"))
    social_component: Mapped[Decimal] = mapped_column(DECIMAL(6, 4), nullable=False, default=Decimal("0"))
    score: Mapped[Decimal] = mapped_column(
        DECIMAL(6, 4),
        nullable=False,
        default=Decimal("0"),
        comment="Weighted sum of the four components, in [0, 1]",
    )
    calculated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_trending_scores_score", "score"),
    )

    def __repr__(self) -> str:
        return f"<TrendingScore card_id={self.card_id!r} score={self.score}>"
