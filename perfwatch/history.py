"""
Bounded per-metric sample history.

Each metric gets its own window of at most ``capacity`` samples; appending to
a full window evicts the oldest sample. Statistics are recomputed from the
window on every call rather than stored alongside it.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from perfwatch.models import MetricSample
from perfwatch.serialization import SerializableMixin

TREND_THRESHOLD = 5.0

TREND_IMPROVING = "improving"
TREND_STABLE = "stable"
TREND_DEGRADING = "degrading"


@dataclass(frozen=True)
class MetricSummary(SerializableMixin):
    metric: str
    count: int
    mean: float
    peak: float
    minimum: float
    latest: float


@dataclass(frozen=True)
class TrendComparison(SerializableMixin):
    metric: str
    trend: str
    delta: float
    baseline: Optional[float]
    samples: int


def classify_trend(delta: float, threshold: float = TREND_THRESHOLD) -> str:
    """Higher values are worse for every tracked metric."""
    if delta > threshold:
        return TREND_DEGRADING
    if delta < -threshold:
        return TREND_IMPROVING
    return TREND_STABLE


class HistoryWindow:
    """Fixed-capacity, oldest-first sequence of samples for one metric."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._samples: deque[MetricSample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    def append(self, sample: MetricSample) -> None:
        self._samples.append(sample)

    def latest(self) -> Optional[MetricSample]:
        return self._samples[-1] if self._samples else None

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[MetricSample]:
        return iter(self._samples)


class HistoryStore:
    """Owns one HistoryWindow per metric name."""

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._windows: dict[str, HistoryWindow] = {}
        self._lock = threading.Lock()

    def append(self, sample: MetricSample) -> None:
        with self._lock:
            window = self._windows.get(sample.metric)
            if window is None:
                window = self._windows[sample.metric] = HistoryWindow(self.capacity)
            window.append(sample)

    def extend(self, samples: Iterable[MetricSample]) -> None:
        for sample in samples:
            self.append(sample)

    def metrics(self) -> list[str]:
        with self._lock:
            return sorted(self._windows)

    def latest(self, metric: str) -> Optional[MetricSample]:
        with self._lock:
            window = self._windows.get(metric)
            return window.latest() if window else None

    def history(
        self,
        metric: str,
        since: Optional[float] = None,
        until: Optional[float] = None,
    ) -> list[MetricSample]:
        """Samples for ``metric`` with ``since <= timestamp <= until``, oldest first."""
        with self._lock:
            window = self._windows.get(metric)
            samples = list(window) if window else []
        return [
            s
            for s in samples
            if (since is None or s.timestamp >= since) and (until is None or s.timestamp <= until)
        ]

    def summary(
        self,
        metric: str,
        since: Optional[float] = None,
    ) -> Optional[MetricSummary]:
        samples = self.history(metric, since=since)
        if not samples:
            return None
        values = [s.value for s in samples]
        return MetricSummary(
            metric=metric,
            count=len(values),
            mean=sum(values) / len(values),
            peak=max(values),
            minimum=min(values),
            latest=values[-1],
        )

    def compare_with_history(
        self,
        metric: str,
        current: float,
        since: Optional[float] = None,
    ) -> TrendComparison:
        """Compare ``current`` against the mean of the window since ``since``."""
        summary = self.summary(metric, since=since)
        if summary is None:
            return TrendComparison(metric, TREND_STABLE, 0.0, None, 0)
        delta = current - summary.mean
        return TrendComparison(metric, classify_trend(delta), delta, summary.mean, summary.count)

    def rows(self, metrics: Iterable[str], limit: Optional[int] = None) -> list[dict[str, object]]:
        """Align samples of several metrics by timestamp for export."""
        by_time: dict[float, dict[str, object]] = {}
        for metric in metrics:
            for sample in self.history(metric):
                row = by_time.setdefault(sample.timestamp, {"timestamp": sample.timestamp})
                row[metric] = sample.value
        ordered = [by_time[t] for t in sorted(by_time)]
        return ordered[-limit:] if limit else ordered

    def clear(self, metric: Optional[str] = None) -> None:
        with self._lock:
            if metric is None:
                self._windows.clear()
            else:
                self._windows.pop(metric, None)

    def __len__(self) -> int:
        """Total samples held across all windows."""
        with self._lock:
            return sum(len(w) for w in self._windows.values())


__all__ = [
    "HistoryWindow",
    "HistoryStore",
    "MetricSummary",
    "TrendComparison",
    "classify_trend",
]
