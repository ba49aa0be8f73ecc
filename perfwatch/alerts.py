"""
Threshold alerting with lazy hysteresis.

An alert exists in the active registry exactly while its rule's condition
holds: it is created by the first sample that satisfies the rule, left alone
while later samples keep satisfying it, and removed by the first sample that
does not. There is no separate cooldown timer.

Alert ids are ``"{metric}_{threshold}"``, so one rule maps to at most one
active alert.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from perfwatch.events import EventDispatcher, EventType
from perfwatch.exceptions import ConfigurationError
from perfwatch.models import TRACKED_METRICS, MetricSample
from perfwatch.serialization import SerializableMixin, epoch_to_iso

logger = logging.getLogger(__name__)

OPERATORS = (">", "<", "=")
EQUALITY_TOLERANCE = 0.01

METRIC_NAMES = {
    "cpu_usage_percent": "CPU usage",
    "memory_usage_percent": "Memory usage",
    "disk_usage_percent": "Disk usage",
    "load_average_1m": "Load average",
}


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AlertRule:
    """Fire when ``metric <operator> threshold`` holds for a sample."""

    metric: str
    threshold: float
    operator: str = ">"
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.operator not in OPERATORS:
            raise ValueError(f"operator must be one of {OPERATORS}, got {self.operator!r}")

    @property
    def id(self) -> str:
        return f"{self.metric}_{self.threshold:g}"

    def matches(self, value: float) -> bool:
        if self.operator == ">":
            return value > self.threshold
        if self.operator == "<":
            return value < self.threshold
        return abs(value - self.threshold) < EQUALITY_TOLERANCE


DEFAULT_ALERT_RULES: tuple[AlertRule, ...] = (
    AlertRule("cpu_usage_percent", 85.0, ">"),
    AlertRule("memory_usage_percent", 90.0, ">"),
    AlertRule("disk_usage_percent", 95.0, ">"),
    AlertRule("load_average_1m", 10.0, ">"),
)


def _checked_rules(rules: Iterable[AlertRule]) -> tuple[AlertRule, ...]:
    """Enabled rules sharing an alert id must be identical."""
    checked = tuple(rules)
    seen: dict[str, AlertRule] = {}
    for rule in checked:
        if not rule.enabled:
            continue
        other = seen.setdefault(rule.id, rule)
        if other != rule:
            raise ConfigurationError(
                "AlertEngine",
                f"rules {other.metric} {other.operator} {other.threshold:g} and "
                f"{rule.metric} {rule.operator} {rule.threshold:g} share alert id {rule.id!r}",
            )
    return checked


def calculate_severity(value: float, threshold: float) -> AlertSeverity:
    """Severity from the proportional distance between value and threshold."""
    if threshold == 0:
        return AlertSeverity.CRITICAL if value != 0 else AlertSeverity.LOW
    excess = abs(value - threshold) / abs(threshold)
    if excess > 0.3:
        return AlertSeverity.CRITICAL
    if excess > 0.2:
        return AlertSeverity.HIGH
    if excess > 0.1:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def format_alert_message(rule: AlertRule, value: float) -> str:
    name = METRIC_NAMES.get(rule.metric, rule.metric)
    unit = TRACKED_METRICS.get(rule.metric, "")
    relation = {">": "exceeding", "<": "below", "=": "at"}[rule.operator]
    return f"{name} is {value:.1f}{unit}, {relation} threshold of {rule.threshold:g}{unit}"


@dataclass
class Alert(SerializableMixin):
    id: str
    metric: str
    severity: AlertSeverity
    message: str
    value: float
    threshold: float
    timestamp: float
    resolved: bool = False

    _custom_serializers = {"timestamp": epoch_to_iso}


@dataclass(frozen=True)
class AlertChange:
    """One registry transition produced by :meth:`AlertEngine.evaluate`."""

    kind: str  # "created" or "cleared"
    alert: Alert

    @property
    def alert_id(self) -> str:
        return self.alert.id


class AlertEngine:
    """Owns the active-alert registry and a bounded log of past alerts."""

    def __init__(
        self,
        rules: Iterable[AlertRule] = DEFAULT_ALERT_RULES,
        dispatcher: Optional[EventDispatcher] = None,
        history_limit: int = 50,
    ):
        self._rules: tuple[AlertRule, ...] = _checked_rules(rules)
        self._dispatcher = dispatcher
        self._active: dict[str, Alert] = {}
        self._history: deque[Alert] = deque(maxlen=history_limit)
        self._lock = threading.Lock()

    @property
    def rules(self) -> tuple[AlertRule, ...]:
        return self._rules

    def _publish(self, event: EventType, alert: Alert) -> None:
        if self._dispatcher is not None:
            self._dispatcher.publish(event, alert)

    def evaluate(self, sample: MetricSample) -> list[AlertChange]:
        """Apply every enabled rule for ``sample.metric`` and update the registry."""
        changes: list[AlertChange] = []
        with self._lock:
            for rule in self._rules:
                if not rule.enabled or rule.metric != sample.metric:
                    continue
                alert_id = rule.id
                firing = rule.matches(sample.value)
                if firing and alert_id not in self._active:
                    alert = Alert(
                        id=alert_id,
                        metric=rule.metric,
                        severity=calculate_severity(sample.value, rule.threshold),
                        message=format_alert_message(rule, sample.value),
                        value=sample.value,
                        threshold=rule.threshold,
                        timestamp=sample.timestamp,
                    )
                    self._active[alert_id] = alert
                    self._history.append(alert)
                    changes.append(AlertChange("created", alert))
                elif not firing and alert_id in self._active:
                    changes.append(AlertChange("cleared", self._active.pop(alert_id)))

        for change in changes:
            if change.kind == "created":
                logger.warning(f"Alert raised [{change.alert.severity.value}]: {change.alert.message}")
                self._publish(EventType.ALERT, change.alert)
            else:
                logger.info(f"Alert cleared: {change.alert_id}")
                self._publish(EventType.ALERT_CLEARED, change.alert)
        return changes

    def evaluate_all(self, samples: Iterable[MetricSample]) -> list[AlertChange]:
        changes: list[AlertChange] = []
        for sample in samples:
            changes.extend(self.evaluate(sample))
        return changes

    def resolve_alert(self, alert_id: str) -> bool:
        """Mark an active alert resolved.

        The alert stays registered until its condition clears, so the next
        firing sample does not raise a duplicate.
        """
        with self._lock:
            alert = self._active.get(alert_id)
            if alert is None or alert.resolved:
                return False
            alert.resolved = True
        self._publish(EventType.ALERT_RESOLVED, alert)
        return True

    def clear_alert(self, alert_id: str) -> bool:
        """Drop an active alert regardless of its condition."""
        with self._lock:
            alert = self._active.pop(alert_id, None)
        if alert is None:
            return False
        self._publish(EventType.ALERT_CLEARED, alert)
        return True

    def get_active_alerts(self) -> list[Alert]:
        with self._lock:
            return list(self._active.values())

    def get_alert_history(self) -> list[Alert]:
        """Most recent alerts first."""
        with self._lock:
            return list(reversed(self._history))

    def update_rules(self, rules: Iterable[AlertRule]) -> None:
        """Replace the rule set. Alerts whose rule is gone are cleared."""
        new_rules = _checked_rules(rules)
        live_ids = {rule.id for rule in new_rules if rule.enabled}
        with self._lock:
            self._rules = new_rules
            orphaned = [self._active.pop(aid) for aid in list(self._active) if aid not in live_ids]
        for alert in orphaned:
            self._publish(EventType.ALERT_CLEARED, alert)


__all__ = [
    "AlertSeverity",
    "AlertRule",
    "Alert",
    "AlertChange",
    "AlertEngine",
    "DEFAULT_ALERT_RULES",
    "calculate_severity",
]
