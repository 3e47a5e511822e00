"""
TCGMaster — Population Report Model

Graded population counts per (card, grading company, grade). Upserted by
the population job on its natural key.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import TIMESTAMP, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, new_uuid, utcnow


class PopulationReport(Base):
    __tablename__ = "population_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    card_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cards.id", ondelete="CASCADE"),
        nullable=False,
    )
    grading_company: Mapped[str] = mapped_column(String, nullable=False, comment="PSA, BGS, CGC")
    grade: Mapped[str] = mapped_column(String, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("card_id", "grading_company", "grade", name="uq_population_card_company_grade"),
    )

    def __repr__(self) -> str:
        return (
            f"<PopulationReport card_id={self.card_id!r} {self.grading_company} "
            f"{self.grade}: {self.count}>"
        )
