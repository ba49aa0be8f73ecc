"""
Periodic metrics polling.

The poller owns an asyncio task that fetches a fresh snapshot every
``interval`` seconds, records one sample per tracked metric, runs the alert
engine over the new samples, then publishes a ``metrics`` event. A failed
cycle is published (``poll_error``, or ``service_degraded`` when the circuit
refused the call) and leaves history untouched; it never stops the loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from perfwatch.alerts import AlertEngine
from perfwatch.events import EventDispatcher, EventType
from perfwatch.exceptions import CircuitOpenError, RequestError
from perfwatch.history import HistoryStore
from perfwatch.models import MetricSample, PerformanceSnapshot
from perfwatch.serialization import SerializableMixin, epoch_to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollFailure(SerializableMixin):
    """Payload of ``poll_error`` and ``service_degraded`` events."""

    timestamp: float
    error_type: str
    message: str
    retryable: bool = False
    endpoint: Optional[str] = None
    cooldown_remaining: Optional[float] = None

    _custom_serializers = {"timestamp": epoch_to_iso}

    @classmethod
    def from_exception(cls, error: Exception, timestamp: float) -> PollFailure:
        return cls(
            timestamp=timestamp,
            error_type=getattr(error, "kind", type(error).__name__),
            message=str(error),
            retryable=bool(getattr(error, "retryable", False)),
            endpoint=getattr(error, "endpoint", None),
            cooldown_remaining=getattr(error, "cooldown_remaining", None),
        )


@dataclass(frozen=True)
class PollResult:
    snapshot: PerformanceSnapshot
    samples: list[MetricSample]


class MetricsPoller:
    """Drives fetch -> history -> alerts -> dispatch on a fixed interval."""

    def __init__(
        self,
        fetch_snapshot: Callable[[], Awaitable[PerformanceSnapshot]],
        history: HistoryStore,
        alert_engine: AlertEngine,
        dispatcher: EventDispatcher,
        interval: float = 12.0,
        clock: Callable[[], float] = time.time,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._fetch_snapshot = fetch_snapshot
        self.history = history
        self.alert_engine = alert_engine
        self.dispatcher = dispatcher
        self.interval = interval
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.polls = 0
        self.failures = 0
        self.last_snapshot: Optional[PerformanceSnapshot] = None
        self.last_error: Optional[PollFailure] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def record(self, snapshot: PerformanceSnapshot) -> PollResult:
        """Apply a successfully fetched snapshot to history, alerts and subscribers."""
        samples = snapshot.samples(self._clock())
        self.history.extend(samples)
        self.alert_engine.evaluate_all(samples)
        self.last_snapshot = snapshot
        self.last_error = None
        self.dispatcher.publish(EventType.METRICS, snapshot)
        return PollResult(snapshot, samples)

    async def poll_once(self) -> Optional[PollResult]:
        """Run one cycle. Returns None on failure instead of raising."""
        self.polls += 1
        try:
            snapshot = await self._fetch_snapshot()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            failure = PollFailure.from_exception(e, self._clock())
            self.last_error = failure
            if isinstance(e, CircuitOpenError):
                logger.warning(f"Metrics service degraded: {e}")
                self.dispatcher.publish(EventType.SERVICE_DEGRADED, failure)
            elif isinstance(e, RequestError):
                logger.warning(f"Metrics poll failed: {e}")
                self.dispatcher.publish(EventType.POLL_ERROR, failure)
            else:
                logger.exception("Unexpected error during metrics poll")
                self.dispatcher.publish(EventType.POLL_ERROR, failure)
            return None
        return self.record(snapshot)

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)

    def start(self) -> bool:
        """Start polling on the running loop. Returns False if already running."""
        if self.running:
            return False
        self._task = asyncio.ensure_future(self._run())
        logger.info(f"Metrics poller started (interval={self.interval}s)")
        self.dispatcher.publish(EventType.POLLER_STARTED, {"interval": self.interval})
        return True

    async def stop(self) -> bool:
        """Cancel the polling task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Metrics poller stopped")
        self.dispatcher.publish(
            EventType.POLLER_STOPPED, {"polls": self.polls, "failures": self.failures}
        )
        return True

    @property
    def stats(self) -> dict[str, object]:
        return {
            "running": self.running,
            "interval": self.interval,
            "polls": self.polls,
            "failures": self.failures,
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }


__all__ = ["MetricsPoller", "PollFailure", "PollResult"]
