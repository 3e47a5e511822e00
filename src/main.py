"""
TCGMaster — Application Entrypoint

Configures structlog, connects to Postgres and Redis, builds the application
context and runs the job scheduler.

Run via:
    python -m src.main
"""

from __future__ import annotations

import asyncio
import logging
import sys

import structlog
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings
from src.context import build_context
from src.pipeline.scheduler import run_scheduler


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


async def create_db_engine() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory from DATABASE_URL.

    Returns:
        (engine, session_factory) tuple.
    """
    logger = structlog.get_logger(__name__)
    logger.info("database_engine_initializing")

    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready")
    return engine, session_factory


# ---------------------------------------------------------------------------
# Application Startup
# ---------------------------------------------------------------------------


async def main() -> None:
    """
    Execution order:
    1. Configure logging (structlog JSON)
    2. Create the database engine and Redis client
    3. Verify the database connection
    4. Build the application context and run the scheduler until shutdown
    """
    _configure_logging(log_level=settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    logger.info("tcgmaster_startup_begin", version="0.1.0")

    if not settings.PPT_API_KEY:
        logger.warning("config_ppt_api_key_missing", note="price sync jobs will fail until set")
    if not settings.POKEMONTCG_API_KEY:
        logger.warning("config_pokemontcg_api_key_missing", note="using anonymous rate limit")

    engine, session_factory = await create_db_engine()

    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        logger.info("database_health_check_passed")
    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        await engine.dispose()
        raise

    redis = Redis.from_url(settings.REDIS_URL)
    context = build_context(engine, session_factory, redis)

    logger.info("tcgmaster_startup_complete", population_enabled=context.population is not None)

    try:
        await run_scheduler(context)
    except Exception as e:
        logger.error(
            "tcgmaster_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await context.aclose()
        logger.info("tcgmaster_shutdown_complete")


if __name__ == "__main__":
    asyncio.run(main())
