from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.base import utcnow
from src.models.card import Card, CardSet
from src.repos.upsert import upsert

_CARD_UPDATE_COLUMNS = [
    "name", "number", "rarity", "artist", "tcg_player_id", "ppt_card_id",
    "image_url", "updated_at",
]


class CardRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, card_id: str) -> Optional[Card]:
        return await self._session.get(Card, card_id)

    async def get_by_tcg_player_id(self, tcg_player_id: str) -> Optional[Card]:
        result = await self._session.execute(
            select(Card)
            .where(Card.tcg_player_id == tcg_player_id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_with_set(self, card_id: str) -> Optional[tuple[Card, CardSet]]:
        result = await self._session.execute(
            select(Card, CardSet).join(CardSet, Card.set_id == CardSet.id).where(Card.id == card_id)
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def list_by_set(self, set_id: str) -> list[Card]:
        result = await self._session.execute(
            select(Card)
            .where(Card.set_id == set_id)
            .order_by(Card.number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_stale(self, stale_before: datetime, limit: int) -> list[Card]:
        """
        Cards with a TCGplayer id whose prices are missing or older than stale_before.

        Never-fetched cards come first, then oldest fetch first.
        """
        result = await self._session.execute(
            select(Card)
            .where(
                Card.tcg_player_id.is_not(None),
                (Card.last_price_fetch.is_(None)) | (Card.last_price_fetch < stale_before),
            )
            .order_by(Card.last_price_fetch.asc().nulls_first(), Card.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_priced(self) -> list[Card]:
        result = await self._session.execute(
            select(Card).where(Card.last_price_fetch.is_not(None)).order_by(Card.id)
        )
        return list(result.scalars().all())

    async def list_recent(self, limit: int) -> list[tuple[Card, CardSet]]:
        """Newest cards first, with their sets."""
        result = await self._session.execute(
            select(Card, CardSet)
            .join(CardSet, Card.set_id == CardSet.id)
            .order_by(Card.created_at.desc(), Card.id)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def touch_price_fetch(self, card_id: str, fetched_at: datetime, ttl_seconds: int) -> None:
        await self._session.execute(
            update(Card)
            .where(Card.id == card_id)
            .values(last_price_fetch=fetched_at, price_cache_ttl=ttl_seconds, updated_at=utcnow())
        )

    async def upsert_many(self, rows: list[dict[str, Any]]) -> int:
        """Upsert card rows keyed on (set_id, slug)."""
        now = utcnow()
        for row in rows:
            row.setdefault("updated_at", now)
        return await upsert(
            self._session, Card, rows,
            conflict_columns=["set_id", "slug"],
            update_columns=_CARD_UPDATE_COLUMNS,
        )

    # -----------------------------------------------------------------------
    # Image fetch state
    # -----------------------------------------------------------------------

    async def list_missing_images(self, limit: int) -> list[Card]:
        """Cards never attempted that have no local image."""
        result = await self._session.execute(
            select(Card)
            .where(Card.local_image_url.is_(None), Card.image_fetch_attempts == 0)
            .order_by(Card.created_at, Card.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_image_retries(self, max_attempts: int, limit: int) -> list[Card]:
        """Cards that failed at least once but have attempts left."""
        result = await self._session.execute(
            select(Card)
            .where(
                Card.local_image_url.is_(None),
                Card.image_fetch_attempts > 0,
                Card.image_fetch_attempts < max_attempts,
            )
            .order_by(Card.image_fetch_attempts, Card.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def increment_image_attempts(self, card_id: str) -> int:
        """Atomically bump the attempt counter; returns the new value."""
        result = await self._session.execute(
            update(Card)
            .where(Card.id == card_id)
            .values(image_fetch_attempts=Card.image_fetch_attempts + 1)
            .returning(Card.image_fetch_attempts)
        )
        return int(result.scalar_one())

    async def mark_image_fetched(self, card_id: str, local_image_url: str, fetched_at: datetime) -> None:
        await self._session.execute(
            update(Card)
            .where(Card.id == card_id)
            .values(local_image_url=local_image_url, image_fetched_at=fetched_at)
        )

    async def set_poke_tcg_id(self, card_id: str, poke_tcg_id: str) -> None:
        await self._session.execute(
            update(Card).where(Card.id == card_id).values(poke_tcg_id=poke_tcg_id)
        )
