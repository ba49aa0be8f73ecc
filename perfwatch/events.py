"""
Typed publish/subscribe hub.

Fan-out is synchronous. A subscriber that raises is logged and skipped;
it never stops its siblings and never reaches the publisher.

Usage:
    dispatcher = EventDispatcher()
    unsubscribe = dispatcher.subscribe(EventType.ALERT, lambda alert: print(alert.message))
    dispatcher.publish(EventType.ALERT, alert)
    unsubscribe()
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Union

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Any]


class EventType(str, Enum):
    """Events published by the client."""

    METRICS = "metrics"
    ALERT = "alert"
    ALERT_CLEARED = "alert_cleared"
    ALERT_RESOLVED = "alert_resolved"
    POLL_ERROR = "poll_error"
    SERVICE_DEGRADED = "service_degraded"
    BENCHMARK_COMPLETE = "benchmark_complete"
    POLLER_STARTED = "poller_started"
    POLLER_STOPPED = "poller_stopped"


EventName = Union[EventType, str]


def _event_key(event: EventName) -> str:
    return event.value if isinstance(event, EventType) else str(event)


class EventDispatcher:
    """Maps event names to ordered, de-duplicated callback sets."""

    def __init__(self) -> None:
        self._subscribers: dict[str, dict[Callback, None]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: EventName, callback: Callback) -> Callable[[], None]:
        """Register ``callback`` for ``event``.

        Returns:
            A function that removes this subscription. Calling it more than
            once is harmless. Subscribing the same callback again keeps its
            original position and delivers once.
        """
        if not callable(callback):
            raise TypeError("callback must be callable")
        key = _event_key(event)
        with self._lock:
            self._subscribers.setdefault(key, {})[callback] = None

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(key)
                if callbacks and callback in callbacks:
                    del callbacks[callback]
                    if not callbacks:
                        del self._subscribers[key]

        return unsubscribe

    def publish(self, event: EventName, payload: Any = None) -> int:
        """Invoke every current subscriber of ``event`` with ``payload``.

        Returns:
            Number of callbacks that completed without raising.
        """
        key = _event_key(event)
        with self._lock:
            callbacks = list(self._subscribers.get(key, ()))

        delivered = 0
        for callback in callbacks:
            try:
                callback(payload)
                delivered += 1
            except Exception:
                logger.exception(f"Subscriber {callback!r} failed handling '{key}' event")
        return delivered

    def subscriber_count(self, event: EventName | None = None) -> int:
        with self._lock:
            if event is not None:
                return len(self._subscribers.get(_event_key(event), ()))
            return sum(len(cbs) for cbs in self._subscribers.values())

    def clear(self) -> None:
        """Drop every subscription."""
        with self._lock:
            self._subscribers.clear()


__all__ = ["EventType", "EventDispatcher"]
