"""
Tests for the request coalescer (src/cache/coalescer.py).

Concurrent callers for one key share a single producer call and its result
or its exception; failures are never cached.
"""

from __future__ import annotations

import asyncio
import gc

import pytest

from src.cache import RequestCoalescer, TieredCache


class Producer:
    """Counts calls; yields to the loop so concurrent callers overlap."""

    def __init__(self, value=None, error: Exception | None = None, delay: float = 0.01):
        self.calls = 0
        self._value = value if value is not None else {"price": 42}
        self._error = error
        self._delay = delay

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._value


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self, coalescer: RequestCoalescer) -> None:
        """N concurrent calls → 1 producer call, all receive the identical object."""
        producer = Producer()

        results = await asyncio.gather(
            *(coalescer.coalesce("ppt:card:1", producer, ttl_seconds=60) for _ in range(10))
        )

        assert producer.calls == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_result_is_cached(self, coalescer: RequestCoalescer, cache: TieredCache) -> None:
        producer = Producer(value={"price": 7})

        await coalescer.coalesce("ppt:card:2", producer, ttl_seconds=60)
        second = await coalescer.coalesce("ppt:card:2", producer, ttl_seconds=60)

        assert producer.calls == 1
        assert second == {"price": 7}
        assert await cache.get("ppt:card:2") == {"price": 7}

    @pytest.mark.asyncio
    async def test_decode_applied_to_cache_hits(self, coalescer: RequestCoalescer, cache: TieredCache) -> None:
        await cache.set("k", {"price": 5}, ttl_seconds=60)

        value = await coalescer.coalesce("k", Producer(), ttl_seconds=60, decode=lambda p: p["price"])

        assert value == 5

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_coalesce(self, coalescer: RequestCoalescer) -> None:
        producer = Producer()

        await asyncio.gather(
            coalescer.coalesce("a", producer, ttl_seconds=60),
            coalescer.coalesce("b", producer, ttl_seconds=60),
        )

        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_inflight_cleared_after_completion(self, coalescer: RequestCoalescer) -> None:
        await coalescer.coalesce("k", Producer(), ttl_seconds=60)
        await asyncio.sleep(0)

        assert coalescer.in_flight("k") is False


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_producer(self, coalescer: RequestCoalescer) -> None:
        producer = Producer(value={"price": 11}, delay=0.05)

        first = asyncio.create_task(coalescer.coalesce("k", producer, ttl_seconds=60))
        second = asyncio.create_task(coalescer.coalesce("k", producer, ttl_seconds=60))
        await asyncio.sleep(0.01)
        first.cancel()

        assert await second == {"price": 11}
        with pytest.raises(asyncio.CancelledError):
            await first
        assert producer.calls == 1

    @pytest.mark.asyncio
    async def test_failure_after_all_waiters_cancelled_is_retrieved(self, coalescer: RequestCoalescer) -> None:
        """No "exception was never retrieved" report when nobody is left waiting."""
        loop = asyncio.get_running_loop()
        reported: list[dict] = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            producer = Producer(error=RuntimeError("boom"), delay=0.02)
            waiter = asyncio.create_task(coalescer.coalesce("k", producer, ttl_seconds=60))
            await asyncio.sleep(0.005)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            await asyncio.sleep(0.05)
            del waiter
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert producer.calls == 1
        assert coalescer.in_flight("k") is False
        assert reported == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_error_shared_by_all_waiters(self, coalescer: RequestCoalescer) -> None:
        producer = Producer(error=RuntimeError("upstream down"))

        results = await asyncio.gather(
            *(coalescer.coalesce("k", producer, ttl_seconds=60) for _ in range(5)),
            return_exceptions=True,
        )

        assert producer.calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, coalescer: RequestCoalescer, cache: TieredCache) -> None:
        failing = Producer(error=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await coalescer.coalesce("k", failing, ttl_seconds=60)
        await asyncio.sleep(0)

        assert await cache.get("k") is None

        ok = Producer(value={"price": 1})
        assert await coalescer.coalesce("k", ok, ttl_seconds=60) == {"price": 1}
        assert ok.calls == 1

    @pytest.mark.asyncio
    async def test_marker_released_after_failure(self, coalescer: RequestCoalescer, cache: TieredCache) -> None:
        with pytest.raises(RuntimeError):
            await coalescer.coalesce("k", Producer(error=RuntimeError("boom")), ttl_seconds=60)

        assert await cache.acquire_marker("k", ttl_seconds=30) is True


class TestCrossInstance:
    @pytest.mark.asyncio
    async def test_waits_for_remote_result(self, coalescer: RequestCoalescer, cache: TieredCache) -> None:
        """Another instance holds the marker and publishes; we never call upstream."""
        await cache.acquire_marker("k", ttl_seconds=30)
        producer = Producer()

        async def publish_later() -> None:
            await asyncio.sleep(0.02)
            await cache.set("k", {"price": 99}, ttl_seconds=60)

        publisher = asyncio.create_task(publish_later())
        value = await coalescer.coalesce("k", producer, ttl_seconds=60)
        await publisher

        assert value == {"price": 99}
        assert producer.calls == 0

    @pytest.mark.asyncio
    async def test_fetches_after_wait_expires(self, coalescer: RequestCoalescer, cache: TieredCache) -> None:
        await cache.acquire_marker("k", ttl_seconds=30)
        producer = Producer(value={"price": 3})

        value = await coalescer.coalesce("k", producer, ttl_seconds=60)

        assert value == {"price": 3}
        assert producer.calls == 1
