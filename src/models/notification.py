"""
TCGMaster — Notification Queue Model

Rows here are picked up by the email/push delivery workers, which live
outside this package. The pricing engine only ever inserts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BOOLEAN, JSON, TIMESTAMP, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, new_uuid, utcnow


class Notification(Base):
    """Queued user notification."""

    __tablename__ = "notification_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    is_sent_email: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    is_sent_push: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_notification_queue_user", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification user_id={self.user_id!r} type={self.type!r} title={self.title!r}>"
