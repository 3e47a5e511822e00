"""
TCGMaster — Card Image Fetcher

Downloads card artwork once and serves it from local storage afterwards.

Per card:
  1. Skip if a local image already exists or attempts are exhausted.
  2. Bump image_fetch_attempts with a single UPDATE (concurrent runs can't
     both read the same count).
  3. Resolve the artwork via pokemontcg.io: by poke_tcg_id when known,
     otherwise by name within the card's set. Falls back to the image URL
     the price API gave us.
  4. Download, write under IMAGE_STORAGE_DIR, record local_image_url.

Scheduled as a 6-hourly batch over never-attempted cards and a daily retry
over cards with 0 < attempts < MAX_IMAGE_FETCH_ATTEMPTS.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable
from pathlib import Path

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.errors import EntityNotFoundError, PricingError, UpstreamError
from src.models.base import utcnow
from src.models.card import Card, CardSet
from src.pipeline.pokemontcg import PokemonTCGClient
from src.repos import CardRepo
from src.schemas import ImageFetchResult

logger = structlog.get_logger(__name__)


class FetchOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


def image_extension(content_type: str | None) -> str:
    content_type = (content_type or "").lower()
    return "jpg" if "jpeg" in content_type or "jpg" in content_type else "png"


class ImageFetcher:
    """
    Usage:
        fetcher = ImageFetcher(session_factory)
        outcome = await fetcher.fetch_card_image(card_id)
        result = await fetcher.fetch_missing_images()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: Callable[[], PokemonTCGClient] = PokemonTCGClient,
        storage_dir: str | Path | None = None,
        public_prefix: str | None = None,
        max_attempts: int | None = None,
    ):
        self.session_factory = session_factory
        self._client_factory = client_factory
        self._storage_dir = Path(storage_dir or settings.IMAGE_STORAGE_DIR)
        self._public_prefix = (public_prefix or settings.IMAGE_PUBLIC_PREFIX).rstrip("/")
        self._max_attempts = max_attempts or settings.MAX_IMAGE_FETCH_ATTEMPTS

    # -----------------------------------------------------------------------
    # Single card
    # -----------------------------------------------------------------------

    async def fetch_card_image(self, card_id: str) -> FetchOutcome:
        async with self._client_factory() as client, httpx.AsyncClient(
            timeout=30.0, follow_redirects=True
        ) as http:
            return await self._fetch_one(card_id, client, http)

    async def _fetch_one(
        self,
        card_id: str,
        client: PokemonTCGClient,
        http: httpx.AsyncClient,
    ) -> FetchOutcome:
        async with self.session_factory() as session:
            repo = CardRepo(session)
            found = await repo.get_with_set(card_id)
            if found is None:
                raise EntityNotFoundError(f"Card not found: {card_id}")
            card, card_set = found

            if card.local_image_url:
                return FetchOutcome.SKIPPED
            if card.image_fetch_attempts >= self._max_attempts:
                logger.info("image_fetch_attempts_exhausted", card_id=card_id)
                return FetchOutcome.SKIPPED

            attempts = await repo.increment_image_attempts(card_id)
            await session.commit()

        try:
            source_url = await self._resolve_source(card, card_set, client)
            if not source_url:
                raise UpstreamError(f"No image source for {card.name} in {card_set.slug}")
            local_url = await self._download(card_id, source_url, http)
        except (PricingError, httpx.HTTPError, OSError) as e:
            logger.warning("image_fetch_failed", card_id=card_id, attempts=attempts, error=str(e))
            return FetchOutcome.FAILED

        async with self.session_factory() as session:
            await CardRepo(session).mark_image_fetched(card_id, local_url, utcnow())
            await session.commit()

        logger.info("image_fetched", card_id=card_id, local_image_url=local_url)
        return FetchOutcome.SUCCEEDED

    async def _resolve_source(
        self, card: Card, card_set: CardSet, client: PokemonTCGClient
    ) -> str | None:
        found = None
        if card.poke_tcg_id:
            found = await client.fetch_card(card.poke_tcg_id)
        else:
            found = await client.find_card(card.name, card_set.slug)
            if found is not None:
                async with self.session_factory() as session:
                    await CardRepo(session).set_poke_tcg_id(card.id, found.id)
                    await session.commit()

        if found is not None and found.image_url:
            return found.image_url
        return card.image_url

    async def _download(self, card_id: str, source_url: str, http: httpx.AsyncClient) -> str:
        response = await http.get(source_url)
        if response.status_code >= 400:
            raise UpstreamError(
                f"Image download failed: {response.status_code}",
                status_code=response.status_code,
            )

        filename = f"{card_id}.{image_extension(response.headers.get('content-type'))}"
        path = self._storage_dir / "cards" / filename
        await asyncio.to_thread(self._write, path, response.content)
        return f"{self._public_prefix}/cards/{filename}"

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    # -----------------------------------------------------------------------
    # Batches
    # -----------------------------------------------------------------------

    async def fetch_missing_images(self, limit: int | None = None) -> ImageFetchResult:
        """Cards never attempted and without a local image."""
        async with self.session_factory() as session:
            cards = await CardRepo(session).list_missing_images(limit or settings.IMAGE_FETCH_BATCH_LIMIT)
        return await self._run_batch([c.id for c in cards], "fetch_missing")

    async def retry_failed_images(self, limit: int | None = None) -> ImageFetchResult:
        """Cards that failed before but still have attempts left."""
        async with self.session_factory() as session:
            cards = await CardRepo(session).list_image_retries(
                self._max_attempts, limit or settings.IMAGE_RETRY_BATCH_LIMIT
            )
        return await self._run_batch([c.id for c in cards], "retry_failed")

    async def _run_batch(self, card_ids: list[str], kind: str) -> ImageFetchResult:
        result = ImageFetchResult()
        if not card_ids:
            logger.info("image_batch_empty", kind=kind)
            return result

        async with self._client_factory() as client, httpx.AsyncClient(
            timeout=30.0, follow_redirects=True
        ) as http:
            for card_id in card_ids:
                result.processed += 1
                try:
                    outcome = await self._fetch_one(card_id, client, http)
                except Exception as e:
                    logger.error("image_batch_card_failed", card_id=card_id, error=str(e))
                    outcome = FetchOutcome.FAILED

                if outcome is FetchOutcome.SUCCEEDED:
                    result.succeeded += 1
                elif outcome is FetchOutcome.SKIPPED:
                    result.skipped += 1
                else:
                    result.failed += 1

        logger.info(
            "image_batch_complete",
            kind=kind,
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result
