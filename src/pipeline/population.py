"""
TCGMaster — Population Report Job

Weekly refresh of graded population counts for the newest cards. The
lookup itself is pluggable (PopulationScraper); this job only batches,
paces and persists.
"""

from __future__ import annotations

from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.repos import CardRepo, PopulationRepo
from src.schemas import PopulationEntry, PopulationResult
from src.utils.batching import ErrorCollector, iter_sub_batches

logger = structlog.get_logger(__name__)


class PopulationScraper(Protocol):
    """Returns per-grade population counts for a card, empty when unknown."""

    async def lookup(
        self, card_name: str, set_name: str, grading_company: str = "PSA"
    ) -> list[PopulationEntry]: ...


class PopulationJob:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scraper: PopulationScraper,
        grading_company: str = "PSA",
    ):
        self.session_factory = session_factory
        self._scraper = scraper
        self._grading_company = grading_company

    async def refresh_population(
        self,
        limit: int | None = None,
        batch_size: int | None = None,
        delay_seconds: float | None = None,
    ) -> PopulationResult:
        """
        Look up and store population counts for the most recently added cards.

        Cards are processed in sub-batches with a pause between them; one
        card failing is recorded and the job moves on.
        """
        async with self.session_factory() as session:
            rows = await CardRepo(session).list_recent(limit or settings.POPULATION_BATCH_LIMIT)
            work = [(card.id, card.name, card_set.name) for card, card_set in rows]

        if not work:
            logger.info("population_no_cards")
            return PopulationResult()

        errors = ErrorCollector(settings.MAX_ERRORS_REPORTED)
        processed = 0
        updated = 0

        async for batch in iter_sub_batches(
            work,
            batch_size or settings.POPULATION_SUB_BATCH_SIZE,
            settings.POPULATION_BATCH_DELAY_SECONDS if delay_seconds is None else delay_seconds,
        ):
            for card_id, card_name, set_name in batch:
                processed += 1
                try:
                    entries = await self._scraper.lookup(card_name, set_name, self._grading_company)
                    if not entries:
                        continue
                    async with self.session_factory() as session:
                        await PopulationRepo(session).upsert_entries(card_id, entries)
                        await session.commit()
                    updated += 1
                except Exception as e:
                    errors.add(f"{card_name}: {e}")
                    logger.warning("population_card_failed", card_id=card_id, error=str(e))

        logger.info("population_refresh_complete", processed=processed, updated=updated, errors=errors.total)
        return PopulationResult(processed=processed, updated=updated, errors=errors.capped)

    async def get_population(self, card_id: str) -> list[PopulationEntry]:
        async with self.session_factory() as session:
            rows = await PopulationRepo(session).list_for_card(card_id)
        return [
            PopulationEntry(grading_company=r.grading_company, grade=r.grade, count=r.count)
            for r in rows
        ]
