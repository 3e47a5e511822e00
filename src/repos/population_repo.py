from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.base import utcnow
from src.models.population_report import PopulationReport
from src.repos.upsert import upsert
from src.schemas import PopulationEntry


class PopulationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert_entries(self, card_id: str, entries: list[PopulationEntry]) -> int:
        now = utcnow()
        rows = [
            {
                "card_id": card_id,
                "grading_company": e.grading_company.upper(),
                "grade": e.grade,
                "count": e.count,
                "updated_at": now,
            }
            for e in entries
        ]
        return await upsert(
            self._session, PopulationReport, rows,
            conflict_columns=["card_id", "grading_company", "grade"],
            update_columns=["count", "updated_at"],
        )

    async def list_for_card(self, card_id: str) -> list[PopulationReport]:
        result = await self._session.execute(
            select(PopulationReport)
            .where(PopulationReport.card_id == card_id)
            .order_by(PopulationReport.grading_company, PopulationReport.grade)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
