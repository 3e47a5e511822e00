"""
TCGMaster — Price Alerts Engine

Evaluates standing alerts against the stored price snapshots and manages
alert lifecycle for their owners.

An alert fires when |Δ%| from its baseline reaches the threshold in the
configured direction. Firing queues one notification, then moves the
baseline to the current price, so the same move never fires twice.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.cache.tiered import TieredCache
from src.config import AlertDirection, DeliveryMethod, settings
from src.errors import EntityNotFoundError
from src.models.base import utcnow
from src.models.price_alert import PriceAlert
from src.pipeline.sync import card_cache_key
from src.repos import AlertRepo, CardRepo, PriceCacheRepo
from src.schemas import AlertCheckResult, AlertSummary, CardPrices, CardSnapshot, TriggeredAlert
from src.signals.notifications import NotificationQueue, NotificationSink
from src.utils.batching import ErrorCollector
from src.utils.pricing import percent_change, resolve_grade_price

logger = structlog.get_logger(__name__)

_CENTS = Decimal("0.01")


def should_fire(change: Decimal, threshold: Decimal, direction: str) -> bool:
    """True iff the move is non-zero, large enough and in the watched direction."""
    if change == 0 or abs(change) < threshold:
        return False
    if direction == AlertDirection.UP.value:
        return change > 0
    if direction == AlertDirection.DOWN.value:
        return change < 0
    return True


class AlertsEngine:
    """
    Usage:
        engine = AlertsEngine(session_factory, cache)
        alert = await engine.create_alert(user_id, card_id, Decimal("10"))
        result = await engine.check_all_alerts()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: TieredCache,
        sink_factory: Callable[[AsyncSession], NotificationSink] = NotificationQueue,
    ):
        self.session_factory = session_factory
        self._cache = cache
        self._sink_factory = sink_factory

    # -----------------------------------------------------------------------
    # Evaluation
    # -----------------------------------------------------------------------

    async def check_all_alerts(self) -> AlertCheckResult:
        """
        Evaluate every active alert. One alert failing never stops the rest.

        Returns:
            AlertCheckResult with checked/triggered counts and capped errors.
        """
        async with self.session_factory() as session:
            rows = await AlertRepo(session).list_active_with_cards()
            work = [(alert.id, card.name) for alert, card, _ in rows]

        errors = ErrorCollector(settings.MAX_ERRORS_REPORTED)
        checked = 0
        triggered = 0

        for alert_id, card_name in work:
            checked += 1
            try:
                async with self.session_factory() as session:
                    fired = await self._evaluate(session, alert_id, card_name)
                    await session.commit()
                if fired:
                    triggered += 1
            except Exception as e:
                errors.add(f"Alert {alert_id}: {e}")
                logger.error("alert_check_failed", alert_id=alert_id, error=str(e))

        logger.info("alert_check_complete", checked=checked, triggered=triggered, errors=errors.total)
        return AlertCheckResult(checked=checked, triggered=triggered, errors=errors.capped)

    async def _evaluate(self, session: AsyncSession, alert_id: str, card_name: str) -> bool:
        alert = await session.get(PriceAlert, alert_id)
        if alert is None or not alert.is_active:
            return False

        snapshot = await PriceCacheRepo(session).get_by_card(alert.card_id)
        if snapshot is None:
            return False

        current = resolve_grade_price(
            {"raw": snapshot.raw_prices, "graded": snapshot.graded_prices},
            alert.grade,
            alert.grading_company,
        )
        baseline = alert.baseline_price
        if current is None or baseline is None or baseline == 0:
            logger.debug("alert_skipped_no_price", alert_id=alert_id)
            return False

        current_price = Decimal(str(current)).quantize(_CENTS)
        change = percent_change(Decimal(baseline), current_price)
        if not should_fire(change, Decimal(alert.threshold_percent), alert.direction):
            return False

        fired = TriggeredAlert(
            alert_id=alert.id,
            user_id=alert.user_id,
            card_id=alert.card_id,
            card_name=card_name,
            grade=alert.grade,
            previous_price=Decimal(baseline),
            current_price=current_price,
            percent_change=change.quantize(_CENTS),
            direction="up" if change > 0 else "down",
            delivery_method=alert.delivery_method,
        )
        await self._sink_factory(session).enqueue(fired)
        await AlertRepo(session).record_trigger(alert, current_price, utcnow())

        logger.info(
            "alert_triggered",
            alert_id=alert.id,
            card_id=alert.card_id,
            previous_price=str(fired.previous_price),
            current_price=str(current_price),
            percent_change=str(fired.percent_change),
        )
        return True

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def _current_price(
        self, session: AsyncSession, card_id: str, grade: str, grading_company: str | None
    ) -> Decimal | None:
        """Best currently known price: stored snapshot first, then the fast tier."""
        prices: CardPrices | None = None
        row = await PriceCacheRepo(session).get_by_card(card_id)
        if row is not None:
            prices = CardPrices.model_validate({"raw": row.raw_prices, "graded": row.graded_prices})
        else:
            card = await CardRepo(session).get(card_id)
            if card is not None and card.tcg_player_id:
                cached = await self._cache.get(card_cache_key(card.tcg_player_id))
                if cached is not None:
                    prices = CardSnapshot.model_validate(cached).prices

        if prices is None:
            return None
        price = resolve_grade_price(prices, grade, grading_company)
        return Decimal(str(price)).quantize(_CENTS) if price is not None else None

    async def create_alert(
        self,
        user_id: str,
        card_id: str,
        threshold_percent: Decimal,
        direction: AlertDirection = settings.DEFAULT_ALERT_DIRECTION,
        grade: str = settings.DEFAULT_ALERT_GRADE,
        grading_company: str | None = None,
        variant_id: str | None = None,
        delivery_method: DeliveryMethod = settings.DEFAULT_DELIVERY_METHOD,
    ) -> PriceAlert:
        """
        Create an alert with its baseline set from the best known price.

        Raises:
            ValueError: Threshold is not positive.
            EntityNotFoundError: Card does not exist.
        """
        threshold = Decimal(str(threshold_percent))
        if threshold <= 0:
            raise ValueError("threshold_percent must be positive")

        async with self.session_factory() as session:
            if await CardRepo(session).get(card_id) is None:
                raise EntityNotFoundError(f"Card not found: {card_id}")

            baseline = await self._current_price(session, card_id, grade, grading_company)
            alert = await AlertRepo(session).create(
                user_id=user_id,
                card_id=card_id,
                variant_id=variant_id,
                grade=grade,
                grading_company=grading_company,
                threshold_percent=threshold,
                direction=AlertDirection(direction).value,
                baseline_price=baseline,
                delivery_method=DeliveryMethod(delivery_method).value,
                is_active=True,
                trigger_count=0,
            )
            await session.commit()

        logger.info(
            "alert_created",
            alert_id=alert.id,
            user_id=user_id,
            card_id=card_id,
            baseline_price=str(baseline) if baseline is not None else None,
        )
        return alert

    async def toggle_alert(self, alert_id: str, user_id: str) -> PriceAlert:
        """Flip is_active on an alert the user owns."""
        async with self.session_factory() as session:
            repo = AlertRepo(session)
            alert = await repo.get_owned(alert_id, user_id)
            if alert is None:
                raise EntityNotFoundError(f"Alert not found: {alert_id}")
            alert.is_active = not alert.is_active
            await session.commit()

        logger.info("alert_toggled", alert_id=alert_id, is_active=alert.is_active)
        return alert

    async def delete_alert(self, alert_id: str, user_id: str) -> None:
        async with self.session_factory() as session:
            repo = AlertRepo(session)
            alert = await repo.get_owned(alert_id, user_id)
            if alert is None:
                raise EntityNotFoundError(f"Alert not found: {alert_id}")
            await repo.delete(alert)
            await session.commit()

        logger.info("alert_deleted", alert_id=alert_id, user_id=user_id)

    async def get_user_alerts(self, user_id: str) -> list[AlertSummary]:
        async with self.session_factory() as session:
            rows = await AlertRepo(session).list_for_user(user_id)

        return [
            AlertSummary(
                id=alert.id,
                card_id=alert.card_id,
                card_name=card.name,
                set_name=card_set.name,
                image_url=card.local_image_url or card.image_url,
                grade=alert.grade,
                grading_company=alert.grading_company,
                threshold_percent=alert.threshold_percent,
                direction=alert.direction,
                baseline_price=alert.baseline_price,
                is_active=alert.is_active,
                last_triggered=alert.last_triggered,
                trigger_count=alert.trigger_count,
                delivery_method=alert.delivery_method,
                created_at=alert.created_at,
            )
            for alert, card, card_set in rows
        ]
