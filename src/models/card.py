"""
TCGMaster — Card & Set Models

`sets` rows are keyed naturally by (game, slug); `cards` rows by
(set_id, slug). Imports upsert on those keys so re-running an import never
duplicates rows.

The image and price bookkeeping columns on `cards` form the per-card fetch
state: `image_fetch_attempts` only ever goes up, and once
`local_image_url` is set the image jobs leave the card alone.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BOOLEAN,
    DATE,
    TIMESTAMP,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, new_uuid, utcnow


class CardSet(Base):
    """A card set (expansion) for one game."""

    __tablename__ = "sets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    game: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Game slug, e.g. 'pokemon'",
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[str] = mapped_column(String, nullable=False)
    release_date: Mapped[date | None] = mapped_column(DATE, nullable=True)
    card_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    ppt_set_id: Mapped[str | None] = mapped_column(
        String,
        unique=True,
        nullable=True,
        comment="PokemonPriceTracker set id",
    )
    tcg_player_group_id: Mapped[str | None] = mapped_column(String, nullable=True)
    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Import ordering; higher imports first",
    )
    is_imported: Mapped[bool] = mapped_column(BOOLEAN, default=False, nullable=False)
    imported_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="Last successful import; never moves backwards",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("game", "slug", name="uq_sets_game_slug"),
    )

    def __repr__(self) -> str:
        return (
            f"<CardSet name={self.name!r} game={self.game!r} "
            f"priority={self.priority} imported={self.is_imported}>"
        )


class Card(Base):
    """A single printed card plus its price/image fetch bookkeeping."""

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    set_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("sets.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[str] = mapped_column(String, nullable=False)
    number: Mapped[str | None] = mapped_column(String, nullable=True)
    rarity: Mapped[str | None] = mapped_column(String, nullable=True)
    artist: Mapped[str | None] = mapped_column(String, nullable=True)
    tcg_player_id: Mapped[str | None] = mapped_column(
        String,
        nullable=True,
        comment="TCGplayer product id; the key the price API is queried by",
    )
    ppt_card_id: Mapped[str | None] = mapped_column(String, nullable=True)
    poke_tcg_id: Mapped[str | None] = mapped_column(
        String,
        nullable=True,
        comment="pokemontcg.io canonical id, used for image lookups",
    )
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    local_image_url: Mapped[str | None] = mapped_column(
        String,
        nullable=True,
        comment="Set once a durable local copy of the image exists",
    )
    image_fetched_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    image_fetch_attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
    )
    last_price_fetch: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="Null means never priced; batch sync picks these first",
    )
    price_cache_ttl: Mapped[int] = mapped_column(
        Integer,
        default=3600,
        nullable=False,
        comment="Seconds; value-tiered",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("set_id", "slug", name="uq_cards_set_slug"),
        Index("ix_cards_tcg_player_id", "tcg_player_id"),
        Index("ix_cards_last_price_fetch", "last_price_fetch"),
    )

    def __repr__(self) -> str:
        return (
            f"<Card name={self.name!r} number={self.number!r} "
            f"tcg_player_id={self.tcg_player_id!r}>"
        )
