"""
TCGMaster — Price Sync Engine

Fetches authoritative prices from PokemonPriceTracker, normalizes them into
CardPrices snapshots and writes through the fast-tier cache and the Row
Store.

Entry points:
- get_with_prices: interactive read. Coalesced cache-aside; on upstream
  failure falls back to the last known snapshot, flagged stale.
- sync_stale_entities: scheduled batch refresh of stale cards.
- sync_set_prices: event-driven refresh of one set's cards.
- import_set: idempotent bulk import of a set and its cards.
- sync_sets: refresh the set listing with deterministic import priority.

Every job is a plain coroutine; the scheduler calls the same function for
cron ticks and ad hoc triggers.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.cache.coalescer import RequestCoalescer
from src.cache.tiered import TieredCache
from src.config import settings
from src.errors import PricingError
from src.models.base import utcnow
from src.models.card import Card
from src.pipeline.ppt import CreditLedger, PPTCard, PPTClient, PPTSet
from src.repos import CardRepo, PriceCacheRepo, PriceHistoryRepo, SetRepo
from src.schemas import (
    CardPrices,
    CardSnapshot,
    CardWithPrices,
    ImportResult,
    RawPrices,
    SetSyncResult,
    SyncResult,
)
from src.utils.batching import ErrorCollector, chunked, iter_sub_batches
from src.utils.pricing import (
    calculate_set_priority,
    ensure_utc,
    expires_at_for,
    hours_since,
    normalize_sales_by_grade,
    slugify,
    snapshot_ttl_hours,
)

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Transformation
# ---------------------------------------------------------------------------


def transform_prices(card: PPTCard, include_graded: bool = True) -> CardPrices:
    """Map an upstream card payload onto a CardPrices snapshot."""
    conditions = card.prices.conditions
    raw = RawPrices(
        nearMint=conditions.nearMint,
        lightlyPlayed=conditions.lightlyPlayed,
        moderatelyPlayed=conditions.moderatelyPlayed,
        heavilyPlayed=conditions.heavilyPlayed,
    )
    graded = normalize_sales_by_grade(card.sales_by_grade) if include_graded else {}
    return CardPrices(raw=raw, graded=graded)


def card_cache_key(tcg_player_id: str, include_graded: bool = True) -> str:
    key = f"ppt:card:{tcg_player_id}"
    return key if include_graded else f"{key}:raw-only"


def _parse_release_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10].replace("/", "-"))
    except ValueError:
        logger.warning("ppt_invalid_release_date", raw_date=value)
        return None


def _set_row(info: PPTSet, priority: int) -> dict[str, Any]:
    return {
        "game": settings.DEFAULT_GAME,
        "name": info.name,
        "slug": slugify(info.name),
        "release_date": _parse_release_date(info.releaseDate),
        "card_count": info.cardCount,
        "image_url": info.imageUrl,
        "ppt_set_id": info.id,
        "tcg_player_group_id": info.tcgPlayerGroupId,
        "priority": priority,
    }


def _card_row(set_id: str, card: PPTCard) -> dict[str, Any]:
    return {
        "set_id": set_id,
        "name": card.name,
        "slug": slugify(f"{card.name}-{card.cardNumber or ''}"),
        "number": card.cardNumber,
        "rarity": card.rarity,
        "artist": card.artist,
        "tcg_player_id": card.tcgPlayerId,
        "ppt_card_id": card.id,
        "image_url": card.image_url,
    }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class PriceSyncEngine:
    """
    Usage:
        engine = PriceSyncEngine(session_factory, cache, coalescer)
        result = await engine.get_with_prices("243172")
        summary = await engine.sync_stale_entities()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: TieredCache,
        coalescer: RequestCoalescer,
        client_factory: Callable[[], PPTClient] | None = None,
        credits: CreditLedger | None = None,
    ):
        self.session_factory = session_factory
        self._cache = cache
        self._coalescer = coalescer
        # Every client this engine builds draws on the same daily budget
        self.credits = credits if credits is not None else CreditLedger()
        self._client_factory = client_factory or functools.partial(PPTClient, credits=self.credits)

    # -----------------------------------------------------------------------
    # Interactive read
    # -----------------------------------------------------------------------

    async def get_with_prices(
        self,
        tcg_player_id: str,
        force_refresh: bool = False,
        include_graded: bool = True,
    ) -> CardWithPrices:
        """
        Best available prices for a card.

        Fresh (or coalesced) when upstream answers; otherwise the last known
        snapshot with from_cache=True and stale_hours set. Raises the upstream
        error only when no snapshot exists at all.

        Args:
            tcg_player_id: TCGplayer product id of the card.
            force_refresh: Skip the cache and fetch upstream directly.
            include_graded: Include eBay graded sales (costs an extra credit).
        """
        key = card_cache_key(tcg_player_id, include_graded)
        started_at = utcnow()

        try:
            if force_refresh:
                snapshot = await self._fetch_and_store(tcg_player_id, include_graded)
                await self._cache.set(key, snapshot, settings.PRICE_CACHE_TTL_SECONDS)
            else:
                snapshot = await self._coalescer.coalesce(
                    key,
                    lambda: self._fetch_and_store(tcg_player_id, include_graded),
                    ttl_seconds=settings.PRICE_CACHE_TTL_SECONDS,
                    decode=CardSnapshot.model_validate,
                )
        except PricingError as e:
            logger.warning(
                "price_fetch_failed_trying_stale",
                tcg_player_id=tcg_player_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            stale = await self._last_known(tcg_player_id, include_graded)
            if stale is None:
                raise
            return stale

        return CardWithPrices(
            card_id=snapshot.card_id,
            tcg_player_id=snapshot.tcg_player_id,
            name=snapshot.name,
            prices=snapshot.prices,
            last_updated=snapshot.fetched_at,
            from_cache=ensure_utc(snapshot.fetched_at) < started_at,
        )

    async def _fetch_and_store(self, tcg_player_id: str, include_graded: bool) -> CardSnapshot:
        """Upstream fetch + transform; persists full snapshots best-effort."""
        async with self._client_factory() as client:
            ppt_card = await client.get_card(tcg_player_id, include_ebay=include_graded)

        prices = transform_prices(ppt_card, include_graded)
        fetched_at = utcnow()
        ttl_hours = snapshot_ttl_hours(prices)
        card_id: str | None = None

        # A raw-only snapshot would overwrite the stored graded prices.
        if include_graded:
            try:
                async with self.session_factory() as session:
                    card = await CardRepo(session).get_by_tcg_player_id(tcg_player_id)
                    if card is not None:
                        card_id = card.id
                        await self._store_snapshot(session, card, ppt_card, prices, fetched_at, ttl_hours)
                        await session.commit()
                    else:
                        logger.info("price_sync_card_not_imported", tcg_player_id=tcg_player_id)
            except SQLAlchemyError as e:
                logger.error(
                    "price_snapshot_persist_failed",
                    tcg_player_id=tcg_player_id,
                    error=str(e),
                )

        return CardSnapshot(
            card_id=card_id,
            tcg_player_id=tcg_player_id,
            name=ppt_card.name,
            prices=prices,
            market_price=ppt_card.prices.market,
            fetched_at=fetched_at,
            ttl_hours=ttl_hours,
        )

    async def _last_known(self, tcg_player_id: str, include_graded: bool) -> CardWithPrices | None:
        """Last snapshot from the fast tier, else the Row Store; None if neither has one."""
        cached = await self._cache.get(card_cache_key(tcg_player_id, include_graded))
        if cached is None and not include_graded:
            cached = await self._cache.get(card_cache_key(tcg_player_id, True))
        if cached is not None:
            snapshot = CardSnapshot.model_validate(cached)
            return self._stale_result(
                snapshot.card_id, tcg_player_id, snapshot.name,
                snapshot.prices, snapshot.fetched_at, include_graded,
            )

        try:
            async with self.session_factory() as session:
                card = await CardRepo(session).get_by_tcg_player_id(tcg_player_id)
                if card is None:
                    return None
                row = await PriceCacheRepo(session).get_by_card(card.id)
                if row is None:
                    return None
                prices = CardPrices.model_validate(
                    {"raw": row.raw_prices, "graded": row.graded_prices}
                )
                return self._stale_result(
                    card.id, tcg_player_id, card.name, prices, row.fetched_at, include_graded,
                )
        except SQLAlchemyError as e:
            logger.error("price_stale_lookup_failed", tcg_player_id=tcg_player_id, error=str(e))
            return None

    @staticmethod
    def _stale_result(
        card_id: str | None,
        tcg_player_id: str,
        name: str | None,
        prices: CardPrices,
        fetched_at: datetime,
        include_graded: bool,
    ) -> CardWithPrices:
        if not include_graded:
            prices = CardPrices(raw=prices.raw)
        stale_hours = hours_since(fetched_at)
        logger.info("price_served_stale", tcg_player_id=tcg_player_id, stale_hours=stale_hours)
        return CardWithPrices(
            card_id=card_id,
            tcg_player_id=tcg_player_id,
            name=name,
            prices=prices,
            last_updated=ensure_utc(fetched_at),
            from_cache=True,
            stale_hours=stale_hours,
        )

    async def _store_snapshot(
        self,
        session: AsyncSession,
        card: Card,
        ppt_card: PPTCard,
        prices: CardPrices,
        fetched_at: datetime,
        ttl_hours: int,
    ) -> bool:
        """
        Write-through to the Row Store: snapshot upsert, last-fetch stamp and
        a raw history row when a market price exists.

        Returns:
            True if a snapshot was written (False for an empty payload).
        """
        written = await PriceCacheRepo(session).upsert_snapshot(
            card_id=card.id,
            prices=prices,
            fetched_at=fetched_at,
            expires_at=expires_at_for(fetched_at, ttl_hours),
            source=settings.PPT_SOURCE_NAME,
            ebay_sales=ppt_card.sales_by_grade,
        )
        await CardRepo(session).touch_price_fetch(card.id, fetched_at, ttl_hours * 3600)

        market = ppt_card.prices.market
        if market is not None:
            await PriceHistoryRepo(session).append(
                card_id=card.id,
                price=Decimal(str(market)).quantize(Decimal("0.01")),
                source=settings.PPT_SOURCE_NAME,
                grade="raw",
                recorded_at=fetched_at,
            )

        if not written:
            logger.info("price_snapshot_empty_skipped", card_id=card.id)
        return written

    # -----------------------------------------------------------------------
    # Batch sync
    # -----------------------------------------------------------------------

    async def sync_stale_entities(self, batch_size: int | None = None) -> SyncResult:
        """
        Refresh cards whose prices are missing or older than SYNC_STALE_HOURS.

        Raises:
            ConfigurationError: No API key; nothing is processed.
        """
        client = self._client_factory()
        client.require_credentials()

        batch_size = batch_size or settings.SYNC_BATCH_LIMIT
        stale_before = utcnow() - timedelta(hours=settings.SYNC_STALE_HOURS)

        async with self.session_factory() as session:
            cards = await CardRepo(session).list_stale(stale_before, batch_size)

        if not cards:
            logger.info("price_sync_nothing_stale")
            return SyncResult(message="No stale prices")

        logger.info("price_sync_start", stale_cards=len(cards), batch_size=batch_size)
        return await self._sync_cards(client, cards)

    async def sync_set_prices(self, ppt_set_id: str) -> SyncResult:
        """Refresh every priced card of one imported set."""
        client = self._client_factory()
        client.require_credentials()

        async with self.session_factory() as session:
            card_set = await SetRepo(session).get_by_ppt_id(ppt_set_id)
            if card_set is None:
                return SyncResult(errors=[f"Set not found: {ppt_set_id}"], message="Set not imported")
            cards = [c for c in await CardRepo(session).list_by_set(card_set.id) if c.tcg_player_id]

        logger.info("price_sync_set_start", ppt_set_id=ppt_set_id, cards=len(cards))
        return await self._sync_cards(client, cards)

    async def _sync_cards(self, client: PPTClient, cards: Sequence[Card]) -> SyncResult:
        errors = ErrorCollector(settings.MAX_ERRORS_REPORTED)
        updated = 0
        out_of_credits = False

        async with client:
            async for batch in iter_sub_batches(
                cards, settings.SYNC_SUB_BATCH_SIZE, settings.SYNC_BATCH_DELAY_SECONDS
            ):
                for card in batch:
                    if not client.has_credits():
                        out_of_credits = True
                        break
                    try:
                        if await self._sync_card(client, card):
                            updated += 1
                    except Exception as e:
                        errors.add(f"{card.name}: {e}")
                        logger.warning(
                            "price_sync_card_failed",
                            card_id=card.id,
                            tcg_player_id=card.tcg_player_id,
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                if out_of_credits:
                    logger.warning("price_sync_credits_exhausted", updated=updated)
                    errors.add("Daily credit budget exhausted; remaining cards deferred")
                    break

        logger.info(
            "price_sync_complete",
            updated=updated,
            total=len(cards),
            errors=errors.total,
            credits_used=client.credits_used,
        )
        return SyncResult(
            updated=updated,
            errors=errors.capped,
            message=f"Updated {updated} of {len(cards)} cards",
        )

    async def _sync_card(self, client: PPTClient, card: Card) -> bool:
        assert card.tcg_player_id is not None
        ppt_card = await client.get_card(card.tcg_player_id, include_ebay=True)
        prices = transform_prices(ppt_card, include_graded=True)
        fetched_at = utcnow()
        ttl_hours = snapshot_ttl_hours(prices)

        async with self.session_factory() as session:
            written = await self._store_snapshot(session, card, ppt_card, prices, fetched_at, ttl_hours)
            await session.commit()

        if written:
            snapshot = CardSnapshot(
                card_id=card.id,
                tcg_player_id=card.tcg_player_id,
                name=card.name,
                prices=prices,
                market_price=ppt_card.prices.market,
                fetched_at=fetched_at,
                ttl_hours=ttl_hours,
            )
            await self._cache.set(
                card_cache_key(card.tcg_player_id), snapshot, settings.PRICE_CACHE_TTL_SECONDS
            )
        return written

    # -----------------------------------------------------------------------
    # Sets
    # -----------------------------------------------------------------------

    async def import_set(
        self,
        ppt_set_id: str,
        priority: int | None = None,
        include_ebay: bool = False,
    ) -> ImportResult:
        """
        Import a set and all its cards. Safe to re-run: rows are upserted on
        their natural keys and imported_at never moves backwards.
        """
        errors: list[str] = []
        imported = 0

        async with self._client_factory() as client:
            cards = await client.get_cards_by_set(ppt_set_id, include_ebay=include_ebay)

            async with self.session_factory() as session:
                sets = SetRepo(session)
                card_set = await sets.get_by_ppt_id(ppt_set_id)
                if card_set is None:
                    listing = await client.get_sets()
                    info = next((s for s in listing if s.id == ppt_set_id), None)
                    if info is None:
                        return ImportResult(errors=[f"Set not found: {ppt_set_id}"])
                    row = _set_row(info, priority if priority is not None else 0)
                    await sets.upsert_many([row])
                    await session.commit()
                    card_set = await sets.get_by_slug(row["game"], row["slug"])
                    assert card_set is not None
                elif priority is not None and card_set.priority != priority:
                    card_set.priority = priority
                    await session.commit()
                # A failed chunk rolls back and expires card_set; only its id is used below
                set_id = card_set.id

                # One row per natural key; duplicates within a statement break ON CONFLICT
                rows = list({r["slug"]: r for r in (_card_row(set_id, c) for c in cards)}.values())
                repo = CardRepo(session)
                for i, chunk in enumerate(chunked(rows, settings.IMPORT_UPSERT_CHUNK_SIZE)):
                    try:
                        imported += await repo.upsert_many(list(chunk))
                        await session.commit()
                    except SQLAlchemyError as e:
                        await session.rollback()
                        errors.append(f"Batch {i + 1}: {e}")
                        logger.error("set_import_batch_failed", ppt_set_id=ppt_set_id, batch=i + 1, error=str(e))

                await sets.mark_imported(set_id, utcnow())
                await session.commit()

        await self._cache_imported_prices(cards, include_ebay)

        logger.info(
            "set_import_complete",
            ppt_set_id=ppt_set_id,
            cards_imported=imported,
            errors=len(errors),
        )
        return ImportResult(cards_imported=imported, errors=errors)

    async def _cache_imported_prices(self, cards: Sequence[PPTCard], include_graded: bool) -> None:
        fetched_at = utcnow()
        for card in cards:
            prices = transform_prices(card, include_graded)
            if prices.is_empty():
                continue
            snapshot = CardSnapshot(
                tcg_player_id=card.tcgPlayerId,
                name=card.name,
                prices=prices,
                market_price=card.prices.market,
                fetched_at=fetched_at,
                ttl_hours=snapshot_ttl_hours(prices),
            )
            await self._cache.set(
                card_cache_key(card.tcgPlayerId, include_graded),
                snapshot,
                settings.PRICE_CACHE_TTL_SECONDS,
            )

    async def sync_sets(self) -> SetSyncResult:
        """Upsert the upstream set listing with deterministic priorities."""
        async with self._client_factory() as client:
            listing = await client.get_sets(language="en", sort_by="releaseDate", sort_direction="desc")

        rows_by_slug: dict[str, dict[str, Any]] = {}
        for index, info in enumerate(listing):
            row = _set_row(info, calculate_set_priority(info.name, index))
            rows_by_slug.setdefault(row["slug"], row)

        async with self.session_factory() as session:
            try:
                synced = await SetRepo(session).upsert_many(list(rows_by_slug.values()))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("set_sync_failed", error=str(e))
                return SetSyncResult(errors=[str(e)])

        logger.info("set_sync_complete", synced=synced)
        return SetSyncResult(synced=synced)


