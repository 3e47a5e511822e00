from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.card import Card, CardSet
from src.models.notification import Notification
from src.models.price_alert import PriceAlert


class AlertRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, **values: Any) -> PriceAlert:
        alert = PriceAlert(**values)
        self._session.add(alert)
        await self._session.flush()
        return alert

    async def get_owned(self, alert_id: str, user_id: str) -> Optional[PriceAlert]:
        result = await self._session.execute(
            select(PriceAlert).where(PriceAlert.id == alert_id, PriceAlert.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_active_with_cards(self) -> list[tuple[PriceAlert, Card, CardSet]]:
        result = await self._session.execute(
            select(PriceAlert, Card, CardSet)
            .join(Card, PriceAlert.card_id == Card.id)
            .join(CardSet, Card.set_id == CardSet.id)
            .where(PriceAlert.is_active.is_(True))
            .order_by(PriceAlert.created_at, PriceAlert.id)
            .execution_options(populate_existing=True)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def list_for_user(self, user_id: str) -> list[tuple[PriceAlert, Card, CardSet]]:
        result = await self._session.execute(
            select(PriceAlert, Card, CardSet)
            .join(Card, PriceAlert.card_id == Card.id)
            .join(CardSet, Card.set_id == CardSet.id)
            .where(PriceAlert.user_id == user_id)
            .order_by(PriceAlert.created_at.desc(), PriceAlert.id)
            .execution_options(populate_existing=True)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def record_trigger(self, alert: PriceAlert, current_price: Decimal, at: datetime) -> None:
        """Move the baseline to the price that fired and bump the counters."""
        alert.baseline_price = current_price
        alert.trigger_count = (alert.trigger_count or 0) + 1
        alert.last_triggered = at
        await self._session.flush()

    async def delete(self, alert: PriceAlert) -> None:
        await self._session.delete(alert)
        await self._session.flush()


class NotificationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def enqueue(
        self,
        user_id: str,
        type: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> Notification:
        row = Notification(user_id=user_id, type=type, title=title, body=body, data=data)
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
        )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
