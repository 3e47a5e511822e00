"""
TCGMaster — Cost Basis Lookup

Historical price for a card on a given date, used to value collection
items at the time they were acquired, plus the ROI arithmetic on top.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.repos import PriceCacheRepo, PriceHistoryRepo
from src.schemas import ROIResult
from src.utils.pricing import resolve_grade_price

logger = structlog.get_logger(__name__)

_CENTS = Decimal("0.01")


def end_of_day(on_date: date | datetime) -> datetime:
    """Last instant of the UTC calendar day containing on_date."""
    day = on_date.date() if isinstance(on_date, datetime) else on_date
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def calculate_roi(
    cost_basis: Decimal,
    current_value: Decimal,
    fees: Decimal = Decimal("0"),
) -> ROIResult:
    """
    Gain/loss and percent change of a holding.

    A zero cost basis reports a zero percent change rather than dividing.
    """
    cost = Decimal(str(cost_basis))
    gain_loss = (Decimal(str(current_value)) - cost - Decimal(str(fees))).quantize(_CENTS)
    pct = Decimal("0") if cost == 0 else gain_loss / cost * 100
    return ROIResult(gain_loss=gain_loss, percent_change=pct.quantize(_CENTS))


class PortfolioPricing:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_historical_price(
        self,
        card_id: str,
        on_date: date | datetime,
        grade: str = "raw",
        grading_company: str | None = None,
    ) -> Decimal | None:
        """
        Best-known price for the card as of the end of on_date.

        Prefers a history row for the requested grade, then any row up to
        that day, then the current snapshot. None when nothing is known.
        """
        async with self.session_factory() as session:
            rows = await PriceHistoryRepo(session).up_to(card_id, end_of_day(on_date))
            if rows:
                match = next((r for r in rows if r.grade == grade), rows[0])
                return Decimal(match.price)

            snapshot = await PriceCacheRepo(session).get_by_card(card_id)

        if snapshot is None:
            logger.debug("historical_price_unknown", card_id=card_id, on_date=str(on_date))
            return None

        price = resolve_grade_price(
            {"raw": snapshot.raw_prices, "graded": snapshot.graded_prices},
            grade,
            grading_company,
        )
        if price is None:
            return None
        return Decimal(str(price)).quantize(_CENTS)
