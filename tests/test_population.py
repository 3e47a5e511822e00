"""
Tests for the population report job (src/pipeline/population.py).
"""

from __future__ import annotations

import pytest

from src.pipeline.population import PopulationJob
from src.schemas import PopulationEntry


class FakeScraper:
    """Canned population counts per card name; names in `failing` raise."""

    def __init__(self, counts: dict[str, dict[str, int]], failing: set[str] | None = None):
        self._counts = counts
        self._failing = failing or set()
        self.calls: list[tuple[str, str, str]] = []

    async def lookup(self, card_name: str, set_name: str, grading_company: str = "PSA") -> list[PopulationEntry]:
        self.calls.append((card_name, set_name, grading_company))
        if card_name in self._failing:
            raise RuntimeError("population site timed out")
        return [
            PopulationEntry(grading_company=grading_company, grade=grade, count=count)
            for grade, count in self._counts.get(card_name, {}).items()
        ]


class TestRefreshPopulation:
    @pytest.mark.asyncio
    async def test_stores_counts(self, session_factory, make_card) -> None:
        card = await make_card()
        scraper = FakeScraper({"Charizard": {"10": 121, "9": 890}})
        job = PopulationJob(session_factory, scraper)

        result = await job.refresh_population(delay_seconds=0)

        assert (result.processed, result.updated, result.errors) == (1, 1, [])
        assert scraper.calls == [("Charizard", "Base Set", "PSA")]

        population = await job.get_population(card.id)
        assert {(p.grade, p.count) for p in population} == {("10", 121), ("9", 890)}
        assert {p.grading_company for p in population} == {"PSA"}

    @pytest.mark.asyncio
    async def test_rerun_updates_counts(self, session_factory, make_card) -> None:
        card = await make_card()
        await PopulationJob(session_factory, FakeScraper({"Charizard": {"10": 121}})).refresh_population(
            delay_seconds=0
        )

        job = PopulationJob(session_factory, FakeScraper({"Charizard": {"10": 125}}))
        await job.refresh_population(delay_seconds=0)

        population = await job.get_population(card.id)
        assert [(p.grade, p.count) for p in population] == [("10", 125)]

    @pytest.mark.asyncio
    async def test_empty_lookup_not_counted(self, session_factory, make_card) -> None:
        card = await make_card()
        job = PopulationJob(session_factory, FakeScraper({}))

        result = await job.refresh_population(delay_seconds=0)

        assert (result.processed, result.updated) == (1, 0)
        assert await job.get_population(card.id) == []

    @pytest.mark.asyncio
    async def test_failures_isolated_and_capped(self, session_factory, make_card) -> None:
        names = [f"Card {i}" for i in range(12)]
        for i, name in enumerate(names):
            await make_card(name=name, number=str(i), tcg_player_id=str(i))
        scraper = FakeScraper({"Card 0": {"10": 3}}, failing=set(names[1:]))
        job = PopulationJob(session_factory, scraper)

        result = await job.refresh_population(batch_size=5, delay_seconds=0)

        assert result.processed == 12
        assert result.updated == 1
        assert len(result.errors) == 10
        assert all(e.endswith(": population site timed out") for e in result.errors)

    @pytest.mark.asyncio
    async def test_limit(self, session_factory, make_card) -> None:
        for i in range(3):
            await make_card(name=f"Card {i}", number=str(i), tcg_player_id=str(i))
        scraper = FakeScraper({})

        result = await PopulationJob(session_factory, scraper).refresh_population(limit=2, delay_seconds=0)

        assert result.processed == 2
        assert len(scraper.calls) == 2

    @pytest.mark.asyncio
    async def test_grading_company(self, session_factory, make_card) -> None:
        card = await make_card()
        job = PopulationJob(session_factory, FakeScraper({"Charizard": {"9.5": 40}}), grading_company="bgs")

        await job.refresh_population(delay_seconds=0)

        population = await job.get_population(card.id)
        assert [(p.grading_company, p.grade) for p in population] == [("BGS", "9.5")]

    @pytest.mark.asyncio
    async def test_no_cards(self, session_factory) -> None:
        result = await PopulationJob(session_factory, FakeScraper({})).refresh_population()

        assert result.processed == 0
