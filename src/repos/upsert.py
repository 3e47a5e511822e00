"""Dialect-aware INSERT ... ON CONFLICT for PostgreSQL and SQLite."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.base import new_uuid


def insert_for(session: AsyncSession, model: Any) -> Any:
    """Return an INSERT construct that supports on_conflict_do_update for the bound dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")


async def upsert(
    session: AsyncSession,
    model: Any,
    rows: list[dict[str, Any]],
    conflict_columns: list[str],
    update_columns: list[str],
) -> int:
    """
    Upsert rows keyed on conflict_columns, overwriting update_columns.

    Returns:
        Number of rows sent.
    """
    if not rows:
        return 0
    for row in rows:
        row.setdefault("id", new_uuid())
    stmt = insert_for(session, model).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={col: getattr(stmt.excluded, col) for col in update_columns},
    )
    await session.execute(stmt)
    return len(rows)
