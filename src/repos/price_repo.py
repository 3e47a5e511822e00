from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.price_cache import PriceCache
from src.models.price_history import PriceHistory
from src.repos.upsert import upsert
from src.schemas import CardPrices


class PriceCacheRepo:
    """Durable price snapshots, one per card."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_card(self, card_id: str) -> Optional[PriceCache]:
        result = await self._session.execute(
            select(PriceCache)
            .where(PriceCache.card_id == card_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_snapshot(
        self,
        card_id: str,
        prices: CardPrices,
        fetched_at: datetime,
        expires_at: datetime,
        source: str,
        variant_id: str | None = None,
        ebay_sales: dict[str, Any] | None = None,
    ) -> bool:
        """
        Replace the card's snapshot wholesale.

        Returns False without writing when the snapshot carries no prices.
        """
        if prices.is_empty():
            return False
        dumped = prices.model_dump(mode="json")
        await upsert(
            self._session,
            PriceCache,
            [{
                "card_id": card_id,
                "variant_id": variant_id,
                "raw_prices": dumped["raw"],
                "graded_prices": dumped["graded"],
                "ebay_sales": ebay_sales,
                "source": source,
                "fetched_at": fetched_at,
                "expires_at": expires_at,
            }],
            conflict_columns=["card_id"],
            update_columns=[
                "variant_id", "raw_prices", "graded_prices", "ebay_sales",
                "source", "fetched_at", "expires_at",
            ],
        )
        return True


class PriceHistoryRepo:
    """Append-only price observations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        card_id: str,
        price: Decimal,
        source: str,
        grade: str = "raw",
        variant_id: str | None = None,
        grading_company: str | None = None,
        confidence: Decimal | None = None,
        recorded_at: datetime | None = None,
    ) -> PriceHistory:
        row = PriceHistory(
            card_id=card_id,
            variant_id=variant_id,
            grade=grade,
            grading_company=grading_company,
            price=price,
            source=source,
            confidence=confidence,
        )
        if recorded_at is not None:
            row.recorded_at = recorded_at
        self._session.add(row)
        await self._session.flush()
        return row

    async def latest(self, card_id: str, limit: int = 2, grade: str = "raw") -> list[PriceHistory]:
        """Most recent observations for one grade, newest first."""
        result = await self._session.execute(
            select(PriceHistory)
            .where(PriceHistory.card_id == card_id, PriceHistory.grade == grade)
            .order_by(PriceHistory.recorded_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_since(self, card_id: str, since: datetime) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(PriceHistory)
            .where(PriceHistory.card_id == card_id, PriceHistory.recorded_at >= since)
        )
        return int(result.scalar_one())

    async def up_to(self, card_id: str, until: datetime, limit: int = 10) -> list[PriceHistory]:
        """Observations recorded at or before until, newest first."""
        result = await self._session.execute(
            select(PriceHistory)
            .where(PriceHistory.card_id == card_id, PriceHistory.recorded_at <= until)
            .order_by(PriceHistory.recorded_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
