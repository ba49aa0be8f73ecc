"""
Circuit breaking for remote endpoints.

Each endpoint path gets its own circuit. A circuit opens after
``failure_threshold`` consecutive failures and refuses calls (raising
CircuitOpenError, with no network traffic) until ``cooldown_seconds`` have
passed since the last failure. The first call after the cooldown is a
half-open probe: exactly one is let through, and its outcome decides
whether the circuit closes or reopens.

Usage:
    registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=2))

    result = await registry.guard("/api/performance/metrics", fetch_metrics)

    async with registry.protected_call("/api/fractals/julia"):
        result = await render()
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, TypeVar

from perfwatch.config import CircuitBreakerConfig
from perfwatch.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Configuration for circuit pruning
MAX_CIRCUIT_BREAKERS = 1000  # Maximum registry size before forced pruning
STALE_THRESHOLD_SECONDS = 24 * 60 * 60  # prune if not accessed for 24h

STATUS_CLOSED = "closed"
STATUS_OPEN = "open"
STATUS_HALF_OPEN = "half-open"


@dataclass
class EndpointCircuit:
    """Failure state for one endpoint path."""

    endpoint: str
    failures: int = 0
    last_failure_at: float = 0.0
    is_open: bool = False
    probe_in_flight: bool = False
    last_accessed: float = 0.0


class CircuitBreakerRegistry:
    """Owns one EndpointCircuit per distinct endpoint path.

    State transitions are evaluated lazily on each call attempt; there are
    no timers. All mutations happen synchronously between awaits, so the
    registry is safe under cooperative scheduling. The lock only guards
    the record table against use from other threads.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        max_circuits: int = MAX_CIRCUIT_BREAKERS,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._max_circuits = max_circuits
        self._circuits: dict[str, EndpointCircuit] = {}
        self._lock = threading.Lock()

    @property
    def failure_threshold(self) -> int:
        return self.config.failure_threshold

    @property
    def cooldown_seconds(self) -> float:
        return self.config.cooldown_seconds

    # ------------------------------------------------------------------
    # Record management
    # ------------------------------------------------------------------

    def get_circuit(self, endpoint: str) -> EndpointCircuit:
        """Get or create the circuit for ``endpoint``."""
        with self._lock:
            if len(self._circuits) >= self._max_circuits and endpoint not in self._circuits:
                pruned = self._prune_stale_locked()
                if len(self._circuits) >= self._max_circuits:
                    logger.warning(
                        f"Circuit registry still large after pruning {pruned}: "
                        f"{len(self._circuits)} entries"
                    )

            circuit = self._circuits.get(endpoint)
            if circuit is None:
                circuit = EndpointCircuit(endpoint=endpoint)
                self._circuits[endpoint] = circuit
                logger.debug(f"Created circuit for {endpoint}")
            circuit.last_accessed = self._clock()
            return circuit

    def _prune_stale_locked(self) -> int:
        now = self._clock()
        stale = [
            name
            for name, circuit in self._circuits.items()
            if now - circuit.last_accessed > STALE_THRESHOLD_SECONDS
        ]
        for name in stale:
            del self._circuits[name]
        if stale:
            logger.info(f"Pruned {len(stale)} stale circuits: {stale[:5]}")
        return len(stale)

    def prune_stale(self) -> int:
        """Remove circuits not accessed within 24 hours."""
        with self._lock:
            return self._prune_stale_locked()

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def cooldown_remaining(self, endpoint: str) -> float:
        circuit = self._circuits.get(endpoint)
        if circuit is None or not circuit.is_open:
            return 0.0
        elapsed = self._clock() - circuit.last_failure_at
        return max(0.0, self.cooldown_seconds - elapsed)

    def get_status(self, endpoint: str) -> str:
        """Get circuit status: 'closed', 'open', or 'half-open'."""
        circuit = self._circuits.get(endpoint)
        if circuit is None or not circuit.is_open:
            return STATUS_CLOSED
        if circuit.probe_in_flight or self.cooldown_remaining(endpoint) <= 0:
            return STATUS_HALF_OPEN
        return STATUS_OPEN

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Status and failure count for every tracked endpoint."""
        with self._lock:
            endpoints = list(self._circuits.values())
        return {
            c.endpoint: {
                "status": self.get_status(c.endpoint),
                "failures": c.failures,
                "cooldown_remaining": self.cooldown_remaining(c.endpoint),
            }
            for c in endpoints
        }

    def get_metrics(self) -> dict[str, Any]:
        """Summary counts and an overall health verdict for monitoring."""
        all_status = self.get_all_status()
        summary = {"total": 0, "open": 0, "closed": 0, "half_open": 0, "total_failures": 0}
        open_circuits: list[str] = []

        for endpoint, info in all_status.items():
            summary["total"] += 1
            summary["total_failures"] += info["failures"]
            if info["status"] == STATUS_OPEN:
                summary["open"] += 1
                open_circuits.append(endpoint)
            elif info["status"] == STATUS_HALF_OPEN:
                summary["half_open"] += 1
            else:
                summary["closed"] += 1

        health = "healthy"
        if summary["open"] > 0:
            health = "degraded"
        if summary["open"] >= 3:
            health = "critical"

        return {
            "summary": summary,
            "circuits": all_status,
            "health": {"status": health, "open_circuits": open_circuits},
            "config": {
                "failure_threshold": self.failure_threshold,
                "cooldown_seconds": self.cooldown_seconds,
            },
        }

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _acquire(self, endpoint: str) -> bool:
        """Admit a call or raise CircuitOpenError. Returns True for a probe."""
        circuit = self.get_circuit(endpoint)
        if not circuit.is_open:
            return False

        remaining = self.cooldown_remaining(endpoint)
        if remaining > 0 or circuit.probe_in_flight:
            raise CircuitOpenError(endpoint, remaining)

        circuit.probe_in_flight = True
        logger.info(f"Circuit HALF-OPEN for {endpoint}, sending probe")
        return True

    def record_success(self, endpoint: str) -> None:
        circuit = self.get_circuit(endpoint)
        if circuit.is_open:
            logger.info(f"Circuit CLOSED for {endpoint}")
        circuit.failures = 0
        circuit.is_open = False
        circuit.probe_in_flight = False

    def record_failure(self, endpoint: str) -> bool:
        """Record a failure. Returns True if the circuit just (re)opened."""
        circuit = self.get_circuit(endpoint)
        circuit.failures += 1
        circuit.last_failure_at = self._clock()

        if circuit.probe_in_flight:
            circuit.probe_in_flight = False
            logger.warning(f"Probe failed, circuit re-OPENED for {endpoint}")
            return True

        if not circuit.is_open and circuit.failures >= self.failure_threshold:
            circuit.is_open = True
            logger.warning(f"Circuit OPEN for {endpoint} after {circuit.failures} failures")
            return True
        return False

    def _release_probe(self, endpoint: str) -> None:
        circuit = self._circuits.get(endpoint)
        if circuit is not None:
            circuit.probe_in_flight = False

    @asynccontextmanager
    async def protected_call(self, endpoint: str) -> AsyncGenerator[None, None]:
        """
        Async context manager for circuit-protected calls.

        Raises:
            CircuitOpenError: If the circuit refuses the call
        """
        is_probe = self._acquire(endpoint)
        try:
            yield
        except asyncio.CancelledError:
            # Cancellation says nothing about endpoint health
            if is_probe:
                self._release_probe(endpoint)
            raise
        except Exception as e:
            logger.debug(f"Circuit recorded failure for {endpoint}: {type(e).__name__}: {e}")
            self.record_failure(endpoint)
            raise
        else:
            self.record_success(endpoint)

    async def guard(self, endpoint: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Invoke ``fn`` under the endpoint's circuit."""
        async with self.protected_call(endpoint):
            return await fn()

    def reset(self, endpoint: str | None = None) -> None:
        """Reset one circuit, or all of them."""
        with self._lock:
            if endpoint is None:
                self._circuits.clear()
                logger.info("Reset all circuits")
            else:
                self._circuits.pop(endpoint, None)
                logger.info(f"Reset circuit for {endpoint}")

    def __len__(self) -> int:
        return len(self._circuits)


__all__ = [
    "CircuitBreakerRegistry",
    "EndpointCircuit",
    "STATUS_CLOSED",
    "STATUS_OPEN",
    "STATUS_HALF_OPEN",
]
