"""
TCGMaster — Job Scheduler

Runs the pricing jobs on their cadences and exposes them for event-driven
invocation through trigger().

Cadences (settings):
- sync_prices: 4 hours
- check_alerts: 4 hours
- calculate_trending: 15 minutes
- fetch_images: 6 hours
- retry_images: daily
- sync_sets: daily
- scrape_population: weekly (only when a scraper is configured)

Jobs run one at a time; one job failing is logged and the others continue.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog

from src.config import settings
from src.errors import ConfigurationError

if TYPE_CHECKING:
    from src.context import AppContext

logger = structlog.get_logger(__name__)


@dataclass
class Job:
    name: str
    run: Callable[[], Awaitable[Any]]
    cadence_minutes: int
    last_run: datetime

    def is_due(self, now: datetime) -> bool:
        return now - self.last_run >= timedelta(minutes=self.cadence_minutes)


class Scheduler:
    """
    Async scheduler over a registry of named jobs.

    Each job keeps its own clock, starting from when the scheduler was
    created, so nothing fires until its first cadence has elapsed.
    """

    def __init__(self, context: AppContext | None = None, tick_seconds: float | None = None):
        self.context = context
        self._tick_seconds = settings.SCHEDULER_TICK_SECONDS if tick_seconds is None else tick_seconds
        self._shutdown_event = asyncio.Event()
        self._jobs: dict[str, Job] = {}
        if context is not None:
            self._register_defaults(context)

    def _register_defaults(self, ctx: AppContext) -> None:
        self.register("sync_prices", ctx.sync.sync_stale_entities, settings.SYNC_PRICES_INTERVAL_MINUTES)
        self.register("check_alerts", ctx.alerts.check_all_alerts, settings.CHECK_ALERTS_INTERVAL_MINUTES)
        self.register(
            "calculate_trending", ctx.trending.update_all_trending_scores, settings.TRENDING_INTERVAL_MINUTES
        )
        self.register("fetch_images", ctx.images.fetch_missing_images, settings.FETCH_IMAGES_INTERVAL_MINUTES)
        self.register("retry_images", ctx.images.retry_failed_images, settings.RETRY_IMAGES_INTERVAL_MINUTES)
        self.register("sync_sets", ctx.sync.sync_sets, settings.SYNC_SETS_INTERVAL_MINUTES)
        if ctx.population is not None:
            self.register(
                "scrape_population", ctx.population.refresh_population, settings.POPULATION_INTERVAL_MINUTES
            )

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def register(self, name: str, run: Callable[[], Awaitable[Any]], cadence_minutes: int) -> None:
        self._jobs[name] = Job(
            name=name,
            run=run,
            cadence_minutes=cadence_minutes,
            last_run=datetime.now(timezone.utc),
        )

    async def shutdown(self) -> None:
        """Signal graceful shutdown to the scheduler loop."""
        logger.info("scheduler_shutdown_requested")
        self._shutdown_event.set()

    async def trigger(self, job_name: str) -> Any:
        """
        Run a job now, outside its cadence, and return its result.

        Errors propagate to the caller. The job's clock restarts either way.

        Raises:
            KeyError: Unknown job name.
        """
        job = self._jobs.get(job_name)
        if job is None:
            raise KeyError(f"Unknown job: {job_name}")

        logger.info("scheduler_job_triggered", job=job_name)
        try:
            return await job.run()
        finally:
            job.last_run = datetime.now(timezone.utc)

    async def run_due(self, now: datetime | None = None) -> list[str]:
        """Run every job whose cadence has elapsed. Returns the names that ran."""
        now = now or datetime.now(timezone.utc)
        ran: list[str] = []

        for job in list(self._jobs.values()):
            if not job.is_due(now):
                continue
            ran.append(job.name)
            logger.info("scheduler_job_start", job=job.name)
            try:
                result = await job.run()
                logger.info("scheduler_job_complete", job=job.name, result=_summarize(result))
            except ConfigurationError as e:
                logger.error("scheduler_job_misconfigured", job=job.name, error=str(e))
            except Exception as e:
                logger.error(
                    "scheduler_job_failed",
                    job=job.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                job.last_run = datetime.now(timezone.utc)

        return ran

    async def run(self) -> None:
        """
        Main scheduler loop. Runs until shutdown is signaled.
        """
        logger.info(
            "scheduler_started",
            jobs={name: job.cadence_minutes for name, job in self._jobs.items()},
        )

        try:
            while not self._shutdown_event.is_set():
                try:
                    await self.run_due()

                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self._tick_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
                except Exception as e:
                    logger.error(
                        "scheduler_unknown_error",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(self._tick_seconds)

        except asyncio.CancelledError:
            logger.info("scheduler_cancelled")
            raise
        finally:
            logger.info("scheduler_stopped")


def _summarize(result: Any) -> Any:
    if hasattr(result, "model_dump"):
        summary = result.model_dump()
        if isinstance(summary.get("errors"), list):
            summary["errors"] = len(summary["errors"])
        return summary
    return result


async def run_scheduler(context: AppContext) -> None:
    """
    Initialize and run the scheduler with graceful shutdown handling.

    Registers SIGTERM/SIGINT handlers to trigger shutdown.
    """
    scheduler = Scheduler(context)

    def handle_signal(_signum: int, _frame: Any) -> None:
        logger.info("scheduler_signal_received")
        asyncio.create_task(scheduler.shutdown())

    loop = asyncio.get_running_loop()

    try:
        loop.add_signal_handler(signal.SIGTERM, handle_signal, signal.SIGTERM, None)
        loop.add_signal_handler(signal.SIGINT, handle_signal, signal.SIGINT, None)
    except NotImplementedError:
        logger.warning("signal_handlers_not_supported_on_platform")

    try:
        await scheduler.run()
    except Exception as e:
        logger.error("scheduler_fatal_error", error=str(e), error_type=type(e).__name__)
        raise
