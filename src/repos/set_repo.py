from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.base import utcnow
from src.models.card import CardSet
from src.repos.upsert import upsert
from src.utils.pricing import ensure_utc

_SET_UPDATE_COLUMNS = [
    "name", "release_date", "card_count", "image_url", "ppt_set_id",
    "tcg_player_group_id", "priority", "updated_at",
]


class SetRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, set_id: str) -> Optional[CardSet]:
        return await self._session.get(CardSet, set_id)

    async def get_by_ppt_id(self, ppt_set_id: str) -> Optional[CardSet]:
        result = await self._session.execute(
            select(CardSet)
            .where(CardSet.ppt_set_id == ppt_set_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_slug(self, game: str, slug: str) -> Optional[CardSet]:
        result = await self._session.execute(
            select(CardSet)
            .where(CardSet.game == game, CardSet.slug == slug)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_priority(self, only_pending: bool = False) -> list[CardSet]:
        stmt = select(CardSet).order_by(CardSet.priority.desc(), CardSet.name)
        if only_pending:
            stmt = stmt.where(CardSet.is_imported.is_(False))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_many(self, rows: list[dict[str, Any]]) -> int:
        """Upsert set rows keyed on (game, slug)."""
        now = utcnow()
        for row in rows:
            row.setdefault("updated_at", now)
        return await upsert(
            self._session, CardSet, rows,
            conflict_columns=["game", "slug"],
            update_columns=_SET_UPDATE_COLUMNS,
        )

    async def mark_imported(self, set_id: str, at: datetime) -> None:
        """Flag a set imported; imported_at only ever moves forward."""
        at = ensure_utc(at)
        previous = await self._session.scalar(select(CardSet.imported_at).where(CardSet.id == set_id))
        if previous is not None:
            at = max(ensure_utc(previous), at)
        await self._session.execute(
            update(CardSet)
            .where(CardSet.id == set_id)
            .values(is_imported=True, imported_at=at)
            .execution_options(synchronize_session=False)
        )
