"""
Shared pytest fixtures for the perfwatch test suite.

Time-dependent components take an injectable clock, so most tests drive a
FakeClock instead of sleeping. Tests that need real HTTP run an in-process
aiohttp server through the ``serve`` fixture.
"""

from contextlib import asynccontextmanager
from typing import Any, Callable

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from perfwatch.events import EventDispatcher, EventType


def pytest_configure(config):
    """Register custom pytest markers for test tiers."""
    config.addinivalue_line("markers", "unit: isolated unit tests with no external dependencies")
    config.addinivalue_line(
        "markers", "integration: tests that run the full request stack against a local server"
    )
    config.addinivalue_line("markers", "slow: long-running tests")


class FakeClock:
    """Manually advanced clock usable wherever ``time.monotonic`` is expected."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """Subscribes to every EventType and keeps (event, payload) pairs."""

    def __init__(self, dispatcher: EventDispatcher):
        self.events: list[tuple[str, Any]] = []
        for event in EventType:
            dispatcher.subscribe(event, lambda payload, e=event: self.events.append((e.value, payload)))

    def of(self, event: EventType) -> list[Any]:
        return [payload for name, payload in self.events if name == event.value]

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def snapshot_payload(**system_overrides: Any) -> dict[str, Any]:
    system = {
        "timestamp": "2024-01-01T00:00:00Z",
        "cpu_usage_percent": 42.0,
        "memory_usage_percent": 55.0,
        "disk_usage_percent": 60.0,
        "load_average_1m": 1.5,
        "load_average_5m": 1.2,
        "load_average_15m": 1.0,
        "cpu_cores": 8,
        "cpu_model": "Test CPU",
    }
    system.update(system_overrides)
    return {
        "timestamp": "2024-01-01T00:00:00Z",
        "system": system,
        "application": {
            "requests_handled": 1200,
            "average_response_time_ms": 12.5,
            "cache_hit_rate": 0.8,
            "memory_usage_mb": 256.0,
        },
        "hardware": {"cpu_model": "Test CPU"},
        "runtime": {"rust_version": "1.75"},
    }


def fractal_payload(width: int = 4, height: int = 3, pixels_per_second: float = 6000.0) -> dict:
    return {
        "data": [0] * (width * height * 4),
        "width": width,
        "height": height,
        "computation_time_ms": 12.0,
        "zoom_level": 1.0,
        "parameters": {},
        "performance_metrics": {
            "pixels_per_second": pixels_per_second,
            "parallel_efficiency": 0.9,
            "memory_usage_mb": 1.5,
            "cpu_utilization": 75.0,
        },
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def recorder(dispatcher) -> EventRecorder:
    return EventRecorder(dispatcher)


@pytest.fixture
def make_snapshot_payload() -> Callable[..., dict]:
    return snapshot_payload


@pytest.fixture
def make_fractal_payload() -> Callable[..., dict]:
    return fractal_payload


@pytest.fixture
def serve():
    """Start an aiohttp test server for a list of (method, path, handler) routes.

    Usage:
        async with serve([("GET", "/x", handler)]) as server:
            url = str(server.make_url(""))
    """

    @asynccontextmanager
    async def _serve(routes):
        app = web.Application()
        for method, path, handler in routes:
            app.router.add_route(method, path, handler)
        server = TestServer(app)
        await server.start_server()
        try:
            yield server
        finally:
            await server.close()

    return _serve
