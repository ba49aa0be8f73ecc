"""Tests for request coalescing."""

import asyncio

import pytest

from perfwatch.cache import TTLCache
from perfwatch.coalescer import RequestCoalescer
from perfwatch.exceptions import ServerError


class GatedProducer:
    """Producer whose calls block until ``release`` is set."""

    def __init__(self, result="value", error=None):
        self.calls = 0
        self.release = asyncio.Event()
        self.result = result
        self.error = error

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return f"{self.result}-{self.calls}"


@pytest.fixture
def coalescer(clock):
    return RequestCoalescer(TTLCache(maxsize=16, ttl_seconds=600, clock=clock))


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_share_one_call(self, coalescer):
        producer = GatedProducer()
        first = asyncio.ensure_future(coalescer.execute({"zoom": 1.0, "cx": -0.5}, producer))
        second = asyncio.ensure_future(coalescer.execute({"cx": -0.5, "zoom": 1.0}, producer))
        await asyncio.sleep(0)
        assert coalescer.in_flight_count == 1

        producer.release.set()
        results = await asyncio.gather(first, second)

        assert producer.calls == 1
        assert results == ["value-1", "value-1"]
        assert coalescer.in_flight_count == 0
        assert coalescer.stats["joined"] == 1

    @pytest.mark.asyncio
    async def test_canonically_equal_floats_coalesce(self, coalescer):
        producer = GatedProducer()
        first = asyncio.ensure_future(coalescer.execute({"zoom": 0.1 + 0.2}, producer))
        second = asyncio.ensure_future(coalescer.execute({"zoom": 0.3}, producer))
        await asyncio.sleep(0)
        producer.release.set()
        await asyncio.gather(first, second)
        assert producer.calls == 1

    @pytest.mark.asyncio
    async def test_different_params_do_not_coalesce(self, coalescer):
        producer = GatedProducer()
        producer.release.set()
        await asyncio.gather(
            coalescer.execute({"zoom": 1.0}, producer),
            coalescer.execute({"zoom": 2.0}, producer),
        )
        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_error_reaches_every_waiter_and_clears_token(self, coalescer):
        error = ServerError("/api/fractals/julia", 500, "HTTP_500", "boom")
        producer = GatedProducer(error=error)
        first = asyncio.ensure_future(coalescer.execute("key", producer))
        second = asyncio.ensure_future(coalescer.execute("key", producer))
        await asyncio.sleep(0)
        producer.release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)
        assert results == [error, error]
        assert coalescer.in_flight_count == 0
        assert coalescer.get("key") is None

    @pytest.mark.asyncio
    async def test_cancelling_one_waiter_keeps_shared_request(self, coalescer):
        producer = GatedProducer()
        first = asyncio.ensure_future(coalescer.execute("key", producer))
        second = asyncio.ensure_future(coalescer.execute("key", producer))
        await asyncio.sleep(0)

        first.cancel()
        await asyncio.sleep(0)
        producer.release.set()

        assert await second == "value-1"
        assert first.cancelled()
        assert producer.calls == 1


class TestResultCache:
    @pytest.mark.asyncio
    async def test_cached_result_served_without_call(self, coalescer):
        producer = GatedProducer()
        producer.release.set()
        assert await coalescer.execute({"w": 800}, producer) == "value-1"
        assert await coalescer.execute({"w": 800}, producer) == "value-1"
        assert producer.calls == 1
        assert coalescer.stats["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_new_call_after_ttl(self, coalescer, clock):
        producer = GatedProducer()
        producer.release.set()
        await coalescer.execute({"w": 800}, producer)
        clock.advance(601)
        assert await coalescer.execute({"w": 800}, producer) == "value-2"
        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_use_cache_false_skips_read_but_stores(self, coalescer):
        producer = GatedProducer()
        producer.release.set()
        await coalescer.execute("snapshot", producer)
        assert await coalescer.execute("snapshot", producer, use_cache=False) == "value-2"
        assert coalescer.get("snapshot") == "value-2"

    @pytest.mark.asyncio
    async def test_use_cache_false_still_joins_in_flight(self, coalescer):
        producer = GatedProducer()
        cached_read = asyncio.ensure_future(coalescer.execute("snapshot", producer))
        fresh_read = asyncio.ensure_future(coalescer.execute("snapshot", producer, use_cache=False))
        await asyncio.sleep(0)
        producer.release.set()
        assert await asyncio.gather(cached_read, fresh_read) == ["value-1", "value-1"]
        assert producer.calls == 1

    @pytest.mark.asyncio
    async def test_cancel_all(self, coalescer):
        producer = GatedProducer()
        waiter = asyncio.ensure_future(coalescer.execute("key", producer))
        await asyncio.sleep(0)
        assert await coalescer.cancel_all() == 1
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert coalescer.in_flight_count == 0
