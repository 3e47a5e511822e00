"""
TCGMaster — Alert Notification Sink

Formats a fired price alert and puts it on the notification queue. Email
and push delivery workers consume the queue; nothing here talks to a
delivery channel directly.
"""

from __future__ import annotations

from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import NotificationType
from src.repos import NotificationRepo
from src.schemas import TriggeredAlert

logger = structlog.get_logger(__name__)


class NotificationSink(Protocol):
    async def enqueue(self, alert: TriggeredAlert) -> None: ...


def _grade_label(grade: str) -> str:
    return "Raw" if grade.lower() == "raw" else grade.upper()


def format_alert_title(alert: TriggeredAlert) -> str:
    return f"Price Alert: {alert.card_name}"


def format_alert_body(alert: TriggeredAlert) -> str:
    verb = "increased" if alert.percent_change > 0 else "decreased"
    return (
        f"{alert.card_name} ({_grade_label(alert.grade)}) has {verb} by "
        f"{alert.percent_change:+.1f}%. Now ${alert.current_price:.2f}"
    )


class NotificationQueue:
    """
    Writes one notification_queue row per fired alert, inside the caller's
    session. The caller commits.
    """

    def __init__(self, session: AsyncSession):
        self._repo = NotificationRepo(session)

    async def enqueue(self, alert: TriggeredAlert) -> None:
        await self._repo.enqueue(
            user_id=alert.user_id,
            type=NotificationType.PRICE_ALERT.value,
            title=format_alert_title(alert),
            body=format_alert_body(alert),
            data={
                "alertId": alert.alert_id,
                "cardId": alert.card_id,
                "previousPrice": float(alert.previous_price),
                "currentPrice": float(alert.current_price),
                "percentChange": float(alert.percent_change),
                "deliveryMethod": alert.delivery_method,
            },
        )
        logger.info(
            "alert_notification_queued",
            alert_id=alert.alert_id,
            user_id=alert.user_id,
            delivery_method=alert.delivery_method,
        )
