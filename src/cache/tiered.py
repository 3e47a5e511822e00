"""
TCGMaster — Tiered Cache (fast tier)

Thin key-value wrapper over Redis with TTL at write time. Values are stored
as JSON; pydantic models, Decimals and datetimes are encoded through
pydantic's serializer. This layer never queries the Row Store; falling back
to durable storage is the caller's job.

A Redis outage is treated as a cache miss (reads) or a failed write (writes).
Nothing raised by Redis escapes this class.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from pydantic_core import to_json
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)

# Errors that mean "the fast tier is unavailable", not "the caller is wrong".
_CACHE_ERRORS = (RedisError, OSError)


class TieredCache:
    """
    Usage:
        cache = TieredCache(Redis.from_url(settings.REDIS_URL))
        await cache.set("ppt:card:123", snapshot, ttl_seconds=3600)
        payload = await cache.get("ppt:card:123")
    """

    def __init__(self, redis: Redis, namespace: str = "tcgmaster"):
        self._redis = redis
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    async def get(self, key: str) -> Any | None:
        """Return the decoded JSON payload for key, or None on miss/outage."""
        try:
            raw = await self._redis.get(self._key(key))
        except _CACHE_ERRORS as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("cache_payload_corrupt", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Overwrite key with value; returns False if the write did not happen."""
        try:
            payload = to_json(value)
        except (TypeError, ValueError) as e:
            logger.error("cache_encode_failed", key=key, error=str(e))
            return False

        try:
            await self._redis.set(self._key(key), payload, ex=max(int(ttl_seconds), 1))
        except _CACHE_ERRORS as e:
            logger.warning("cache_set_failed", key=key, error=str(e))
            return False
        return True

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except _CACHE_ERRORS as e:
            logger.warning("cache_delete_failed", key=key, error=str(e))

    # -----------------------------------------------------------------------
    # In-flight markers (used by the request coalescer)
    # -----------------------------------------------------------------------

    async def acquire_marker(self, key: str, ttl_seconds: int) -> bool:
        """
        Best-effort cross-instance marker via SET NX.

        Returns True if this caller now owns the marker. If Redis is down the
        marker is reported as acquired so the caller proceeds on its own.
        """
        try:
            acquired = await self._redis.set(
                self._key(f"inflight:{key}"), b"1", ex=max(int(ttl_seconds), 1), nx=True
            )
        except _CACHE_ERRORS as e:
            logger.warning("cache_marker_acquire_failed", key=key, error=str(e))
            return True
        return bool(acquired)

    async def release_marker(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(f"inflight:{key}"))
        except _CACHE_ERRORS as e:
            logger.warning("cache_marker_release_failed", key=key, error=str(e))

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except _CACHE_ERRORS as e:
            logger.warning("cache_close_failed", error=str(e))
