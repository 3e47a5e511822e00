"""
TCGMaster — Application Context

Everything long-lived (database engine, Redis, cache, engines) is built once
at startup and passed down explicitly. Nothing here is a module global.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.cache import RequestCoalescer, TieredCache
from src.engine.alerts import AlertsEngine
from src.engine.portfolio import PortfolioPricing
from src.engine.trending import SocialMentionSource, TrendingEngine
from src.pipeline.images import ImageFetcher
from src.pipeline.population import PopulationJob, PopulationScraper
from src.pipeline.ppt import CreditLedger
from src.pipeline.sync import PriceSyncEngine

logger = structlog.get_logger(__name__)


@dataclass
class AppContext:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    redis: Redis
    cache: TieredCache
    coalescer: RequestCoalescer
    sync: PriceSyncEngine
    trending: TrendingEngine
    alerts: AlertsEngine
    portfolio: PortfolioPricing
    images: ImageFetcher
    ppt_credits: CreditLedger
    population: PopulationJob | None = None

    async def aclose(self) -> None:
        await self.cache.close()
        await self.engine.dispose()
        logger.info("app_context_closed")


def build_context(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Redis,
    population_scraper: PopulationScraper | None = None,
    social_source: SocialMentionSource | None = None,
) -> AppContext:
    """Wire the engines together over one engine, session factory and Redis client."""
    cache = TieredCache(redis)
    coalescer = RequestCoalescer(cache)
    ppt_credits = CreditLedger()
    return AppContext(
        engine=engine,
        session_factory=session_factory,
        redis=redis,
        cache=cache,
        coalescer=coalescer,
        sync=PriceSyncEngine(session_factory, cache, coalescer, credits=ppt_credits),
        trending=TrendingEngine(session_factory, cache, social_source=social_source),
        alerts=AlertsEngine(session_factory, cache),
        portfolio=PortfolioPricing(session_factory),
        images=ImageFetcher(session_factory),
        ppt_credits=ppt_credits,
        population=(
            PopulationJob(session_factory, population_scraper) if population_scraper is not None else None
        ),
    )
