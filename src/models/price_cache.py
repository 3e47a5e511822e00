"""
TCGMaster — Price Snapshot Model

One row per card: the best-known price snapshot. Replaced wholesale by an
upsert keyed on card_id every time a fetch succeeds; never partially
mutated. A snapshot with neither raw nor graded prices is never written.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, new_uuid, utcnow


class PriceCache(Base):
    """Durable price snapshot for a single card."""

    __tablename__ = "price_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    card_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cards.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    variant_id: Mapped[str | None] = mapped_column(String, nullable=True)
    raw_prices: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="nearMint/lightlyPlayed/moderatelyPlayed/heavilyPlayed → price or null",
    )
    graded_prices: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="normalized grade key → {average, median, low, high, count}",
    )
    ebay_sales: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False, default="ppt-api")
    fetched_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
    )
    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        comment="fetched_at + value-tiered TTL",
    )

    def __repr__(self) -> str:
        return (
            f"<PriceCache card_id={self.card_id!r} fetched_at={self.fetched_at} "
            f"expires_at={self.expires_at}>"
        )
