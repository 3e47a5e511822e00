"""
SQLAlchemy 2.0 async DeclarativeBase for TCGMaster.

All models inherit from this Base. Primary keys are UUID strings generated
client-side so the same metadata builds on PostgreSQL and SQLite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


def new_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all TCGMaster database models."""
    pass
