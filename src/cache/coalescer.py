"""
TCGMaster — Request Coalescer

At most one upstream fetch per cache key is in flight inside a process.
Every concurrent caller for the same key awaits the same task and gets the
same value, or the same exception. Failures are never cached and never
retried here; retrying is the caller's business (stale fallback).

Across processes the guarantee is best-effort only: the first instance sets
a short-lived marker in Redis, and other instances poll the cache for a
bounded time before giving up and fetching themselves.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from src.cache.tiered import TieredCache
from src.config import settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RequestCoalescer:
    """
    Usage:
        coalescer = RequestCoalescer(cache)
        snapshot = await coalescer.coalesce(
            "ppt:card:123", lambda: fetch(...), ttl_seconds=3600,
            decode=CardSnapshot.model_validate,
        )
    """

    def __init__(
        self,
        cache: TieredCache,
        marker_ttl_seconds: int | None = None,
        wait_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
    ):
        self._cache = cache
        self._marker_ttl = marker_ttl_seconds or settings.COALESCE_MARKER_TTL_SECONDS
        self._wait_seconds = (
            wait_seconds if wait_seconds is not None else settings.COALESCE_WAIT_SECONDS
        )
        self._poll_interval = poll_interval_seconds or settings.COALESCE_POLL_INTERVAL_SECONDS
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def coalesce(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl_seconds: int,
        decode: Callable[[Any], T] | None = None,
    ) -> T:
        """
        Return the cached value for key, or run producer once and share it.

        Args:
            key: Cache key; also the coalescing key.
            producer: Zero-arg coroutine factory doing the real fetch.
            ttl_seconds: TTL for the cached result.
            decode: Turns a cached JSON payload back into the producer's type.
        """
        task = self._inflight.get(key)
        if task is not None:
            logger.debug("coalesce_joined_inflight", key=key)
            return await asyncio.shield(task)

        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("coalesce_cache_hit", key=key)
            return decode(cached) if decode else cached

        # Another caller may have started the fetch while we read the cache
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, producer, ttl_seconds, decode))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._clear(k, t))
        else:
            logger.debug("coalesce_joined_inflight", key=key)

        return await asyncio.shield(task)

    def _clear(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the error retrieved; every waiter may have been cancelled already
        if not task.cancelled():
            task.exception()

    async def _run(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl_seconds: int,
        decode: Callable[[Any], T] | None,
    ) -> T:
        owns_marker = await self._cache.acquire_marker(key, self._marker_ttl)
        if not owns_marker:
            remote = await self._wait_for_remote(key)
            if remote is not None:
                logger.debug("coalesce_remote_result", key=key)
                return decode(remote) if decode else remote
            logger.info("coalesce_remote_wait_expired", key=key)

        try:
            logger.debug("coalesce_producer_start", key=key)
            value = await producer()
            await self._cache.set(key, value, ttl_seconds)
            return value
        finally:
            if owns_marker:
                await self._cache.release_marker(key)

    async def _wait_for_remote(self, key: str) -> Any | None:
        """Poll the cache while another instance holds the marker."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._wait_seconds
        while loop.time() < deadline:
            await asyncio.sleep(self._poll_interval)
            cached = await self._cache.get(key)
            if cached is not None:
                return cached
        return None
