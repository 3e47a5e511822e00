from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.card import Card, CardSet
from src.models.search_analytics import SearchAnalytics
from src.models.trending_score import TrendingScore
from src.repos.upsert import upsert

_SCORE_COLUMNS = [
    "price_change_24h", "volume_24h", "search_count_24h", "social_mentions",
    "price_component", "volume_component", "search_component", "social_component",
    "score", "calculated_at",
]


class TrendingRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert_score(self, row: dict[str, Any]) -> None:
        """Replace the card's trending row wholesale, keyed on card_id."""
        await upsert(
            self._session, TrendingScore, [row],
            conflict_columns=["card_id"],
            update_columns=_SCORE_COLUMNS,
        )

    async def get_by_card(self, card_id: str) -> Optional[TrendingScore]:
        result = await self._session.execute(
            select(TrendingScore)
            .where(TrendingScore.card_id == card_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def top(
        self, limit: int, game: str | None = None
    ) -> list[tuple[TrendingScore, Card, CardSet]]:
        stmt = (
            select(TrendingScore, Card, CardSet)
            .join(Card, TrendingScore.card_id == Card.id)
            .join(CardSet, Card.set_id == CardSet.id)
            .order_by(TrendingScore.score.desc(), Card.id)
            .limit(limit)
        )
        if game:
            stmt = stmt.where(CardSet.game == game)
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def movers(
        self, limit: int, gainers: bool
    ) -> list[tuple[TrendingScore, Card, CardSet]]:
        """Largest positive (gainers) or negative 24h changes."""
        change = TrendingScore.price_change_24h
        stmt = (
            select(TrendingScore, Card, CardSet)
            .join(Card, TrendingScore.card_id == Card.id)
            .join(CardSet, Card.set_id == CardSet.id)
            .where(change > 0 if gainers else change < 0)
            .order_by(change.desc() if gainers else change.asc(), Card.id)
            .limit(limit)
        )
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return [(row[0], row[1], row[2]) for row in result.all()]


class SearchAnalyticsRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self, card_id: str | None, query: str | None = None, user_id: str | None = None
    ) -> SearchAnalytics:
        row = SearchAnalytics(card_id=card_id, query=query, user_id=user_id)
        self._session.add(row)
        await self._session.flush()
        return row

    async def count_since(self, card_id: str, since: datetime) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(SearchAnalytics)
            .where(SearchAnalytics.card_id == card_id, SearchAnalytics.created_at >= since)
        )
        return int(result.scalar_one())
