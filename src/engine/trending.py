"""
TCGMaster — Trending Engine

Trending score per card from four 24h signals, each normalized to [0, 1]
by a fixed cap:

    score = 0.30 × min(|Δprice%| / 50, 1)
          + 0.25 × min(volume / 100, 1)
          + 0.25 × min(searches / 1000, 1)
          + 0.20 × min(social / 50, 1)

Caps and weights are settings. Scores are recomputed wholesale every cycle
and the top list is cached for 15 minutes.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, NamedTuple, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.cache.tiered import TieredCache
from src.config import settings
from src.models.base import utcnow
from src.models.card import Card, CardSet
from src.models.trending_score import TrendingScore
from src.repos import CardRepo, PriceHistoryRepo, SearchAnalyticsRepo, TrendingRepo
from src.schemas import MarketMovers, TrendingCard, TrendingUpdateResult
from src.utils.batching import ErrorCollector
from src.utils.pricing import percent_change

logger = structlog.get_logger(__name__)

_ONE = Decimal("1")
_SCORE_PLACES = Decimal("0.0001")


class SocialMentionSource(Protocol):
    """Anything that can count a card's social mentions over the trending window."""

    async def count_mentions(self, card: Card) -> int: ...


class TrendingComponents(NamedTuple):
    price_change: Decimal
    volume: Decimal
    searches: Decimal
    social: Decimal


def trending_weights() -> dict[str, Decimal]:
    return {
        "price_change": settings.TRENDING_WEIGHT_PRICE_CHANGE,
        "volume": settings.TRENDING_WEIGHT_VOLUME,
        "searches": settings.TRENDING_WEIGHT_SEARCHES,
        "social": settings.TRENDING_WEIGHT_SOCIAL,
    }


def _normalize(value: Decimal | float | int, cap: Decimal) -> Decimal:
    return min(abs(Decimal(str(value))) / cap, _ONE).quantize(_SCORE_PLACES)


def calculate_trending_components(
    price_change_percent: Decimal | float,
    volume: int,
    search_count: int,
    social_mentions: int,
) -> TrendingComponents:
    return TrendingComponents(
        price_change=_normalize(price_change_percent, settings.TRENDING_PRICE_CHANGE_CAP),
        volume=_normalize(volume, settings.TRENDING_VOLUME_CAP),
        searches=_normalize(search_count, settings.TRENDING_SEARCH_CAP),
        social=_normalize(social_mentions, settings.TRENDING_SOCIAL_CAP),
    )


def calculate_trending_score(
    price_change_percent: Decimal | float,
    volume: int,
    search_count: int,
    social_mentions: int,
) -> Decimal:
    """
    Combined trending score in [0, 1].

    Args:
        price_change_percent: 24h price change in percent; sign is ignored.
        volume: Price observations in the trailing window.
        search_count: Searches for the card in the trailing window.
        social_mentions: Social mentions in the trailing window.
    """
    components = calculate_trending_components(
        price_change_percent, volume, search_count, social_mentions
    )
    weights = trending_weights()
    score = (
        components.price_change * weights["price_change"]
        + components.volume * weights["volume"]
        + components.searches * weights["searches"]
        + components.social * weights["social"]
    )
    return min(score, _ONE).quantize(_SCORE_PLACES)


def _to_trending_card(score: TrendingScore, card: Card, card_set: CardSet) -> TrendingCard:
    return TrendingCard(
        card_id=card.id,
        name=card.name,
        set_name=card_set.name,
        game=card_set.game,
        image_url=card.local_image_url or card.image_url,
        score=score.score,
        price_change_24h=score.price_change_24h,
        volume_24h=score.volume_24h,
        search_count_24h=score.search_count_24h,
        social_mentions_24h=score.social_mentions,
    )


class TrendingEngine:
    """
    Usage:
        engine = TrendingEngine(session_factory, cache)
        await engine.update_all_trending_scores()
        top = await engine.get_trending_cards(limit=10)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: TieredCache,
        social_source: SocialMentionSource | None = None,
    ):
        self.session_factory = session_factory
        self._cache = cache
        self._social_source = social_source

    async def update_all_trending_scores(self) -> TrendingUpdateResult:
        """Recompute every priced card's score, then refresh the cached top list."""
        now = utcnow()
        since = now - timedelta(hours=settings.TRENDING_WINDOW_HOURS)

        async with self.session_factory() as session:
            cards = await CardRepo(session).list_priced()

        errors = ErrorCollector(settings.MAX_ERRORS_REPORTED)
        updated = 0

        for card in cards:
            try:
                async with self.session_factory() as session:
                    row = await self._score_card(session, card, since)
                    row["calculated_at"] = now
                    await TrendingRepo(session).upsert_score(row)
                    await session.commit()
                updated += 1
            except Exception as e:
                errors.add(f"Card {card.id}: {e}")
                logger.warning("trending_card_failed", card_id=card.id, error=str(e))

        await self._refresh_cached_top()

        logger.info("trending_update_complete", updated=updated, errors=errors.total)
        return TrendingUpdateResult(updated=updated, errors=errors.capped)

    async def _score_card(self, session: AsyncSession, card: Card, since: datetime) -> dict[str, Any]:
        history = PriceHistoryRepo(session)

        latest = await history.latest(card.id, limit=2)
        change = Decimal("0")
        if len(latest) == 2 and latest[1].price:
            change = percent_change(latest[1].price, latest[0].price).quantize(Decimal("0.01"))

        volume = await history.count_since(card.id, since)
        searches = await SearchAnalyticsRepo(session).count_since(card.id, since)
        social = await self._social_source.count_mentions(card) if self._social_source else 0

        components = calculate_trending_components(change, volume, searches, social)
        return {
            "card_id": card.id,
            "price_change_24h": change,
            "volume_24h": volume,
            "search_count_24h": searches,
            "social_mentions": social,
            "price_component": components.price_change,
            "volume_component": components.volume,
            "search_component": components.searches,
            "social_component": components.social,
            "score": calculate_trending_score(change, volume, searches, social),
        }

    async def _refresh_cached_top(self) -> None:
        async with self.session_factory() as session:
            rows = await TrendingRepo(session).top(settings.TRENDING_CACHE_SIZE)
        top = [_to_trending_card(*row) for row in rows]
        await self._cache.set(settings.TRENDING_CACHE_KEY, top, settings.TRENDING_CACHE_TTL_SECONDS)

    async def get_trending_cards(self, limit: int = 10, game: str | None = None) -> list[TrendingCard]:
        """
        Top trending cards, optionally for one game.

        Served from the cached top list when it can satisfy the request.
        """
        cached = await self._cache.get(settings.TRENDING_CACHE_KEY)
        if isinstance(cached, list):
            items = [TrendingCard.model_validate(item) for item in cached]
            if game:
                items = [i for i in items if i.game == game]
            if len(items) >= limit or (not game and len(cached) < settings.TRENDING_CACHE_SIZE):
                return items[:limit]

        async with self.session_factory() as session:
            rows = await TrendingRepo(session).top(limit, game=game)
        return [_to_trending_card(*row) for row in rows]

    async def get_market_movers(self, limit: int = 5) -> MarketMovers:
        async with self.session_factory() as session:
            repo = TrendingRepo(session)
            gainers = await repo.movers(limit, gainers=True)
            losers = await repo.movers(limit, gainers=False)
        return MarketMovers(
            gainers=[_to_trending_card(*row) for row in gainers],
            losers=[_to_trending_card(*row) for row in losers],
        )

    async def record_search(
        self, card_id: str | None, query: str | None = None, user_id: str | None = None
    ) -> None:
        async with self.session_factory() as session:
            await SearchAnalyticsRepo(session).record(card_id, query=query, user_id=user_id)
            await session.commit()
