"""Tests for per-endpoint circuit breaking."""

import asyncio

import pytest

from perfwatch.config import CircuitBreakerConfig
from perfwatch.exceptions import CircuitOpenError, ClientError, ServerError
from perfwatch.resilience import (
    STATUS_CLOSED,
    STATUS_HALF_OPEN,
    STATUS_OPEN,
    CircuitBreakerRegistry,
)

ENDPOINT = "/api/performance/metrics"


def _server_error():
    return ServerError(ENDPOINT, 503, "HTTP_503", "Service Unavailable")


class CountingCall:
    """Async callable that fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int = 0, result="ok"):
        self.calls = 0
        self.failures = failures
        self.result = result

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise _server_error()
        return self.result


async def _fail(registry: CircuitBreakerRegistry, times: int, endpoint: str = ENDPOINT):
    for _ in range(times):
        with pytest.raises(ServerError):
            await registry.guard(endpoint, CountingCall(failures=1))


class TestCircuitStates:
    """Closed -> Open -> HalfOpen -> Closed | Open."""

    def test_initial_state_is_closed(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        assert registry.get_status(ENDPOINT) == STATUS_CLOSED
        assert registry.cooldown_remaining(ENDPOINT) == 0.0

    def test_record_failure_opens_at_threshold(self, clock):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=3), clock=clock)
        assert registry.record_failure(ENDPOINT) is False
        assert registry.record_failure(ENDPOINT) is False
        assert registry.record_failure(ENDPOINT) is True
        assert registry.get_status(ENDPOINT) == STATUS_OPEN

    def test_success_resets_failures(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        registry.record_failure(ENDPOINT)
        registry.record_success(ENDPOINT)
        assert registry.get_circuit(ENDPOINT).failures == 0
        registry.record_failure(ENDPOINT)
        assert registry.get_status(ENDPOINT) == STATUS_CLOSED

    def test_status_half_open_after_cooldown(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        registry.record_failure(ENDPOINT)
        registry.record_failure(ENDPOINT)
        clock.advance(29.9)
        assert registry.get_status(ENDPOINT) == STATUS_OPEN
        clock.advance(0.2)
        assert registry.get_status(ENDPOINT) == STATUS_HALF_OPEN


class TestGuard:
    """Tests for guarded calls."""

    @pytest.mark.asyncio
    async def test_open_circuit_makes_no_call(self, clock):
        """After the threshold, calls within cooldown never reach the network."""
        registry = CircuitBreakerRegistry(clock=clock)
        await _fail(registry, 2)

        call = CountingCall()
        with pytest.raises(CircuitOpenError) as exc_info:
            await registry.guard(ENDPOINT, call)

        assert call.calls == 0
        assert exc_info.value.endpoint == ENDPOINT
        assert exc_info.value.cooldown_remaining == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_probe_success_closes_circuit(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        await _fail(registry, 2)
        clock.advance(30.1)

        assert await registry.guard(ENDPOINT, CountingCall(result="recovered")) == "recovered"
        assert registry.get_status(ENDPOINT) == STATUS_CLOSED
        assert registry.get_circuit(ENDPOINT).failures == 0

    @pytest.mark.asyncio
    async def test_probe_failure_reopens_with_fresh_cooldown(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        await _fail(registry, 2)
        clock.advance(31)

        await _fail(registry, 1)

        assert registry.get_status(ENDPOINT) == STATUS_OPEN
        assert registry.cooldown_remaining(ENDPOINT) == pytest.approx(30.0)
        call = CountingCall()
        with pytest.raises(CircuitOpenError):
            await registry.guard(ENDPOINT, call)
        assert call.calls == 0

    @pytest.mark.asyncio
    async def test_only_one_probe_in_flight(self, clock):
        """While a probe is pending, other callers are refused."""
        registry = CircuitBreakerRegistry(clock=clock)
        await _fail(registry, 2)
        clock.advance(31)

        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probe"

        probe = asyncio.ensure_future(registry.guard(ENDPOINT, slow_probe))
        await asyncio.sleep(0)

        other = CountingCall()
        with pytest.raises(CircuitOpenError):
            await registry.guard(ENDPOINT, other)
        assert other.calls == 0

        release.set()
        assert await probe == "probe"
        assert registry.get_status(ENDPOINT) == STATUS_CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_probe_is_not_a_failure(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        await _fail(registry, 2)
        clock.advance(31)
        failures_before = registry.get_circuit(ENDPOINT).failures

        async def hang():
            await asyncio.sleep(3600)

        probe = asyncio.ensure_future(registry.guard(ENDPOINT, hang))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        circuit = registry.get_circuit(ENDPOINT)
        assert circuit.failures == failures_before
        assert circuit.probe_in_flight is False
        # Next caller gets to probe
        assert await registry.guard(ENDPOINT, CountingCall()) == "ok"

    @pytest.mark.asyncio
    async def test_client_errors_count_as_failures(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)

        async def bad_request():
            raise ClientError(ENDPOINT, 400, "BAD_REQUEST", "nope")

        for _ in range(2):
            with pytest.raises(ClientError):
                await registry.guard(ENDPOINT, bad_request)
        assert registry.get_status(ENDPOINT) == STATUS_OPEN

    @pytest.mark.asyncio
    async def test_endpoints_are_isolated(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        await _fail(registry, 2, "/api/fractals/julia")

        assert await registry.guard(ENDPOINT, CountingCall()) == "ok"
        assert registry.get_status("/api/fractals/julia") == STATUS_OPEN
        assert registry.get_status(ENDPOINT) == STATUS_CLOSED

    @pytest.mark.asyncio
    async def test_protected_call_context_manager(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        with pytest.raises(RuntimeError):
            async with registry.protected_call(ENDPOINT):
                raise RuntimeError("boom")
        assert registry.get_circuit(ENDPOINT).failures == 1


class TestRegistryManagement:
    """Tests for status reporting, reset and pruning."""

    @pytest.mark.asyncio
    async def test_get_metrics_reports_degraded(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        await _fail(registry, 2)
        await registry.guard("/health", CountingCall())

        metrics = registry.get_metrics()
        assert metrics["summary"]["total"] == 2
        assert metrics["summary"]["open"] == 1
        assert metrics["health"]["status"] == "degraded"
        assert metrics["health"]["open_circuits"] == [ENDPOINT]
        assert metrics["config"]["failure_threshold"] == 2

    def test_reset_single_endpoint(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        registry.record_failure(ENDPOINT)
        registry.record_failure("/other")
        registry.reset(ENDPOINT)
        assert ENDPOINT not in registry.get_all_status()
        assert "/other" in registry.get_all_status()

    def test_reset_all(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        registry.record_failure(ENDPOINT)
        registry.reset()
        assert len(registry) == 0

    def test_prunes_stale_circuits_when_full(self, clock):
        registry = CircuitBreakerRegistry(clock=clock, max_circuits=3)
        for i in range(3):
            registry.get_circuit(f"/stale/{i}")
        clock.advance(24 * 60 * 60 + 1)

        registry.get_circuit("/fresh")
        assert len(registry) == 1

    def test_prune_stale_keeps_recent_circuits(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        registry.get_circuit("/old")
        clock.advance(23 * 60 * 60)
        registry.get_circuit("/recent")
        clock.advance(60 * 60 + 1)

        assert registry.prune_stale() == 1
        assert len(registry) == 1
        assert registry.prune_stale() == 0
