"""
perfwatch: resilient telemetry and request coordination for a performance
dashboard service.

=== CORE FEATURES ===

REQUEST STACK:
- Single-attempt executor with classified failures (timeout, 4xx, 5xx,
  network, malformed response) and per-attempt correlation ids
- Per-endpoint circuit breaking with a single half-open probe
- Bounded exponential-backoff retry for transient failures only

COMPUTE REQUESTS:
- Coalescing of concurrent identical fractal renders
- TTL + LRU result cache keyed by canonical (float-quantized) parameters
- Complexity-scaled request timeouts

TELEMETRY:
- Periodic metrics polling into bounded per-metric history
- Threshold alerts with lazy hysteresis (no timers)
- Typed publish/subscribe with isolated subscriber failures

Quick start:
    from perfwatch import ClientConfig, EventType, PerformanceClient

    async with PerformanceClient(ClientConfig(base_url="http://localhost:3001")) as client:
        client.subscribe(EventType.ALERT, print)
        await client.start()
"""

from __future__ import annotations

import importlib
from typing import Any

_EXPORT_MAP = {
    # Client
    "PerformanceClient": ("perfwatch.client", "PerformanceClient"),
    "ClientConfig": ("perfwatch.config", "ClientConfig"),
    "CircuitBreakerConfig": ("perfwatch.config", "CircuitBreakerConfig"),
    "RetryConfig": ("perfwatch.retry", "RetryConfig"),
    # Request stack
    "RequestExecutor": ("perfwatch.executor", "RequestExecutor"),
    "CircuitBreakerRegistry": ("perfwatch.resilience", "CircuitBreakerRegistry"),
    "retry_async": ("perfwatch.retry", "retry_async"),
    "with_retry": ("perfwatch.retry", "with_retry"),
    "RequestCoalescer": ("perfwatch.coalescer", "RequestCoalescer"),
    "TTLCache": ("perfwatch.cache", "TTLCache"),
    # Telemetry
    "MetricsPoller": ("perfwatch.poller", "MetricsPoller"),
    "PollFailure": ("perfwatch.poller", "PollFailure"),
    "HistoryStore": ("perfwatch.history", "HistoryStore"),
    "MetricSummary": ("perfwatch.history", "MetricSummary"),
    "AlertEngine": ("perfwatch.alerts", "AlertEngine"),
    "AlertRule": ("perfwatch.alerts", "AlertRule"),
    "Alert": ("perfwatch.alerts", "Alert"),
    "AlertSeverity": ("perfwatch.alerts", "AlertSeverity"),
    "EventDispatcher": ("perfwatch.events", "EventDispatcher"),
    "EventType": ("perfwatch.events", "EventType"),
    # Models
    "MetricSample": ("perfwatch.models", "MetricSample"),
    "PerformanceSnapshot": ("perfwatch.models", "PerformanceSnapshot"),
    "SystemMetrics": ("perfwatch.models", "SystemMetrics"),
    "BenchmarkResult": ("perfwatch.models", "BenchmarkResult"),
    "FractalRequest": ("perfwatch.fractals", "FractalRequest"),
    "FractalResponse": ("perfwatch.fractals", "FractalResponse"),
    "FractalType": ("perfwatch.fractals", "FractalType"),
    "PerformanceAnalysis": ("perfwatch.analysis", "PerformanceAnalysis"),
    # Errors
    "PerfwatchError": ("perfwatch.exceptions", "PerfwatchError"),
    "RequestError": ("perfwatch.exceptions", "RequestError"),
    "RequestTimeoutError": ("perfwatch.exceptions", "RequestTimeoutError"),
    "ClientError": ("perfwatch.exceptions", "ClientError"),
    "ServerError": ("perfwatch.exceptions", "ServerError"),
    "NetworkError": ("perfwatch.exceptions", "NetworkError"),
    "ResponseValidationError": ("perfwatch.exceptions", "ResponseValidationError"),
    "CircuitOpenError": ("perfwatch.exceptions", "CircuitOpenError"),
    # Logging
    "configure_logging": ("perfwatch.logging_config", "configure_logging"),
    "get_logger": ("perfwatch.logging_config", "get_logger"),
}


def __getattr__(name: str) -> Any:
    """Lazily import public symbols so ``import perfwatch`` stays cheap."""
    try:
        module_name, attr_name = _EXPORT_MAP[name]
    except KeyError as exc:
        raise AttributeError(f"module 'perfwatch' has no attribute {name!r}") from exc
    module = importlib.import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))


from perfwatch.__version__ import __version__  # noqa: E402

__all__ = sorted(_EXPORT_MAP) + ["__version__"]
