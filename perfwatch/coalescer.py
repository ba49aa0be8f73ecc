"""
Request coalescing for idempotent, parameterized requests.

Concurrent callers asking for canonically equal parameters share one
underlying request; recent results are served from a TTL cache without any
network traffic.

Usage:
    coalescer = RequestCoalescer(TTLCache(maxsize=256, ttl_seconds=600))

    response = await coalescer.execute(
        {"cx": -0.5, "cy": 0.0, "zoom": 1.0},
        lambda: client.render(request),
    )
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Mapping, Optional, TypeVar, Union

from perfwatch.cache import TTLCache, canonical_params_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestCoalescer(Generic[T]):
    """Deduplicates in-flight requests by canonical key and caches results."""

    def __init__(
        self,
        cache: TTLCache,
        precision: int = 10,
        name: str = "coalescer",
    ):
        self.cache = cache
        self.precision = precision
        self.name = name
        self._in_flight: dict[str, asyncio.Future] = {}
        self._requests = 0
        self._cache_hits = 0
        self._joined = 0
        self._started = 0

    def key_for(self, params: Union[str, Mapping[str, Any]]) -> str:
        if isinstance(params, str):
            return params
        return canonical_params_key(params, self.precision)

    async def execute(
        self,
        params: Union[str, Mapping[str, Any]],
        producer: Callable[[], Awaitable[T]],
        use_cache: bool = True,
    ) -> T:
        """Return a cached value, join an in-flight request, or start one.

        Args:
            params: Request parameters, or an already canonical key.
            producer: Zero-argument coroutine factory that performs the request.
            use_cache: When False, skip the cache read. In-flight requests are
                still joined and the result is still stored.

        Raises:
            Whatever ``producer`` raises; every joined caller sees the same error.
        """
        key = self.key_for(params)
        self._requests += 1

        # Lookup and insertion must not be separated by an await
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                self._cache_hits += 1
                return cached

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, producer))
            task.add_done_callback(lambda t, k=key: self._settled(k, t))
            self._in_flight[key] = task
            self._started += 1
        else:
            self._joined += 1
            logger.debug(f"{self.name}: joined in-flight request {key}")

        return await asyncio.shield(task)

    async def _run(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        try:
            value = await producer()
            self.cache.set(key, value)
            return value
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    def _settled(self, key: str, task: asyncio.Future) -> None:
        # A task cancelled before its first step never reaches _run's finally
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Every waiter may have been cancelled; keep asyncio from warning about it
        if not task.cancelled():
            task.exception()

    def is_in_flight(self, params: Union[str, Mapping[str, Any]]) -> bool:
        return self.key_for(params) in self._in_flight

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def get(self, params: Union[str, Mapping[str, Any]]) -> Optional[T]:
        """Cached value for ``params`` without starting a request."""
        return self.cache.get(self.key_for(params))

    async def cancel_all(self) -> int:
        """Cancel every in-flight request and wait for them to unwind."""
        tasks = list(self._in_flight.values())
        self._in_flight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "requests": self._requests,
            "cache_hits": self._cache_hits,
            "joined": self._joined,
            "started": self._started,
            "in_flight": len(self._in_flight),
            "cache": self.cache.stats,
        }


__all__ = ["RequestCoalescer"]
