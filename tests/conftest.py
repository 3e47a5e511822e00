"""
TCGMaster — Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- In-memory SQLite database shared across sessions (aiosqlite + StaticPool)
- FakeRedis double behind a real TieredCache / RequestCoalescer
- respx router for the PokemonPriceTracker API
- Factories for seeded sets, cards, snapshots and upstream payloads
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncGenerator, Callable

import pytest
import respx
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.cache import RequestCoalescer, TieredCache
from src.config import settings
from src.models import Base, Card, CardSet, PriceCache
from src.models.base import utcnow
from src.pipeline.ppt import PPTClient
from src.utils.pricing import slugify


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for anyio tests."""
    return "asyncio"


# ---------------------------------------------------------------------------
# Redis double
# ---------------------------------------------------------------------------


class FakeRedis:
    """
    The slice of redis.asyncio.Redis the cache uses: get/set(ex, nx)/delete/aclose.

    Set `down = True` to make every call raise a redis ConnectionError.
    """

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.ttls: dict[str, int | None] = {}
        self.down = False
        self.closed = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key: str) -> Any:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False) -> bool | None:
        self._check()
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> TieredCache:
    return TieredCache(fake_redis)


@pytest.fixture
def coalescer(cache: TieredCache) -> RequestCoalescer:
    return RequestCoalescer(cache, wait_seconds=0.05, poll_interval_seconds=0.01)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    In-memory SQLite engine. StaticPool keeps one connection so every
    session in a test sees the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def make_card(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Factory: insert a card (and its set on first use) and return the Card."""

    async def _make(
        name: str = "Charizard",
        number: str = "4",
        tcg_player_id: str | None = "243172",
        set_name: str = "Base Set",
        ppt_set_id: str | None = "base1",
        **extra: Any,
    ) -> Card:
        async with session_factory() as session:
            result = await session.execute(select(CardSet).where(CardSet.slug == slugify(set_name)))
            card_set = result.scalar_one_or_none()
            if card_set is None:
                card_set = CardSet(
                    game="pokemon",
                    name=set_name,
                    slug=slugify(set_name),
                    ppt_set_id=ppt_set_id,
                )
                session.add(card_set)
                await session.flush()

            card = Card(
                set_id=card_set.id,
                name=name,
                slug=slugify(f"{name}-{number}"),
                number=number,
                tcg_player_id=tcg_player_id,
                **extra,
            )
            session.add(card)
            await session.commit()
            return card

    return _make


@pytest.fixture
def make_snapshot(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Factory: store a durable price snapshot for a card."""

    async def _make(
        card_id: str,
        near_mint: float | None = 100.0,
        graded: dict[str, Any] | None = None,
        fetched_at: datetime | None = None,
    ) -> PriceCache:
        fetched_at = fetched_at or utcnow()
        async with session_factory() as session:
            row = PriceCache(
                card_id=card_id,
                raw_prices={
                    "nearMint": near_mint,
                    "lightlyPlayed": None,
                    "moderatelyPlayed": None,
                    "heavilyPlayed": None,
                },
                graded_prices=graded or {},
                source="ppt-api",
                fetched_at=fetched_at,
                expires_at=fetched_at,
            )
            session.add(row)
            await session.commit()
            return row

    return _make


# ---------------------------------------------------------------------------
# PokemonPriceTracker API
# ---------------------------------------------------------------------------


def ppt_card_payload(
    tcg_player_id: str = "243172",
    name: str = "Charizard",
    market: float | None = 350.0,
    number: str = "4",
    sales_by_grade: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Upstream card payload in the conditions shape."""
    data: dict[str, Any] = {
        "id": f"ppt-{tcg_player_id}",
        "tcgPlayerId": tcg_player_id,
        "name": name,
        "setName": "Base Set",
        "cardNumber": number,
        "rarity": "Holo Rare",
        "prices": {
            "market": market,
            "low": market * 0.8 if market else None,
            "conditions": {
                "nearMint": market,
                "lightlyPlayed": market * 0.8 if market else None,
                "moderatelyPlayed": None,
                "heavilyPlayed": None,
            },
        },
        "imageCdnUrl": {"large": f"https://cdn.example.com/{tcg_player_id}.png"},
    }
    if sales_by_grade is not None:
        data["ebay"] = {"salesByGrade": sales_by_grade}
    return data


@pytest.fixture
def card_payload() -> Callable[..., dict[str, Any]]:
    return ppt_card_payload


@pytest.fixture
def ppt_api() -> Any:
    """respx router scoped to the price API base URL."""
    with respx.mock(base_url=settings.PPT_BASE_URL, assert_all_called=False) as router:
        yield router


@pytest.fixture
def ppt_client_factory() -> Callable[[], PPTClient]:
    """Client with a key and no retry delay."""
    return lambda: PPTClient(api_key="test-key", max_retries=0, base_backoff=0)
