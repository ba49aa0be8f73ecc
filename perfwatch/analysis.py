"""
Health scoring and trend comparison for metric snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from perfwatch.history import HistoryStore, classify_trend
from perfwatch.models import PerformanceSnapshot, SystemMetrics
from perfwatch.serialization import SerializableMixin

HEALTH_EXCELLENT = "excellent"
HEALTH_GOOD = "good"
HEALTH_FAIR = "fair"
HEALTH_POOR = "poor"


@dataclass(frozen=True)
class PerformanceAnalysis(SerializableMixin):
    overall_health: str
    score: int
    bottlenecks: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class HistoricalComparison(SerializableMixin):
    cpu_trend: str
    memory_trend: str
    performance_delta: float
    samples: int = 0


def _system(metrics: Union[SystemMetrics, PerformanceSnapshot]) -> SystemMetrics:
    return metrics.system if isinstance(metrics, PerformanceSnapshot) else metrics


def health_label(score: int) -> str:
    if score >= 90:
        return HEALTH_EXCELLENT
    if score >= 75:
        return HEALTH_GOOD
    if score >= 60:
        return HEALTH_FAIR
    return HEALTH_POOR


def analyze_performance(metrics: Union[SystemMetrics, PerformanceSnapshot]) -> PerformanceAnalysis:
    """Score a reading out of 100 and name what is dragging it down."""
    system = _system(metrics)
    score = 100
    bottlenecks: list[str] = []
    recommendations: list[str] = []

    if system.cpu_usage_percent > 80:
        score -= 20
        bottlenecks.append("High CPU usage")
        recommendations.append("Consider optimizing CPU-intensive operations")
    if system.memory_usage_percent > 85:
        score -= 15
        bottlenecks.append("High memory usage")
        recommendations.append("Monitor memory leaks and optimize memory usage")
    if system.disk_usage_percent > 90:
        score -= 10
        bottlenecks.append("Low disk space")
        recommendations.append("Clean up disk space or add more storage")
    if system.load_average_1m > system.cpu_cores * 2:
        score -= 15
        bottlenecks.append("High system load")
        recommendations.append("Reduce concurrent processes or scale resources")

    score = max(0, score)
    return PerformanceAnalysis(health_label(score), score, bottlenecks, recommendations)


def compare_with_history(
    history: HistoryStore,
    metrics: Union[SystemMetrics, PerformanceSnapshot],
    since: Optional[float] = None,
) -> HistoricalComparison:
    """Compare CPU and memory against their recorded means since ``since``."""
    system = _system(metrics)
    cpu = history.compare_with_history("cpu_usage_percent", system.cpu_usage_percent, since)
    memory = history.compare_with_history("memory_usage_percent", system.memory_usage_percent, since)
    if cpu.samples == 0 and memory.samples == 0:
        return HistoricalComparison(classify_trend(0.0), classify_trend(0.0), 0.0)
    return HistoricalComparison(
        cpu_trend=cpu.trend,
        memory_trend=memory.trend,
        performance_delta=(cpu.delta + memory.delta) / 2,
        samples=max(cpu.samples, memory.samples),
    )


__all__ = [
    "PerformanceAnalysis",
    "HistoricalComparison",
    "analyze_performance",
    "compare_with_history",
    "health_label",
]
