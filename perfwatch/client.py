"""
PerformanceClient: the service object UI code talks to.

One client is constructed per process with an injected ClientConfig and
passed by reference to whatever needs it. Every remote call goes through
the same stack:

    retry_async -> CircuitBreakerRegistry.guard -> RequestExecutor.execute

Snapshots, system info and fractal renders additionally sit behind a
RequestCoalescer, so overlapping identical requests share one call and
recent results are served from memory.

Usage:
    async with PerformanceClient(ClientConfig.from_env()) as client:
        client.subscribe(EventType.ALERT, lambda alert: print(alert.message))
        await client.start()
        snapshot = await client.get_current_metrics()
        render = await client.generate_mandelbrot(zoom=100.0)
"""

from __future__ import annotations

import asyncio
import csv
import io
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import aiohttp

from perfwatch.alerts import Alert, AlertEngine, AlertRule
from perfwatch.analysis import (
    HistoricalComparison,
    PerformanceAnalysis,
    analyze_performance,
    compare_with_history,
)
from perfwatch.cache import TTLCache, make_cache_key
from perfwatch.coalescer import RequestCoalescer
from perfwatch.config import ClientConfig
from perfwatch.events import EventDispatcher, EventName, EventType
from perfwatch.executor import RequestExecutor
from perfwatch.fractals import (
    DEFAULT_HEIGHT,
    DEFAULT_WIDTH,
    PRESETS,
    FractalPreset,
    FractalRequest,
    FractalResponse,
    FractalType,
    optimal_iterations,
)
from perfwatch.history import HistoryStore, MetricSummary
from perfwatch.logging_config import get_logger, log_function
from perfwatch.models import (
    BenchmarkResult,
    MetricSample,
    PerformanceSnapshot,
    SystemMetrics,
    parse_object,
)
from perfwatch.poller import MetricsPoller
from perfwatch.resilience import CircuitBreakerRegistry
from perfwatch.retry import RetryConfig, retry_async
from perfwatch.serialization import epoch_to_iso

logger = get_logger(__name__)

METRICS_ENDPOINT = "/api/performance/metrics"
SYSTEM_INFO_ENDPOINT = "/api/performance/system"
BENCHMARK_ENDPOINT = "/api/performance/benchmark"
HEALTH_ENDPOINT = "/health"

SNAPSHOT_KEY = "current_metrics"
SYSTEM_INFO_KEY = "system_info"

EXPORT_LIMIT = 100
EXPORT_COLUMNS = (
    ("cpu_usage", "cpu_usage_percent"),
    ("memory_usage", "memory_usage_percent"),
    ("disk_usage", "disk_usage_percent"),
    ("load_average", "load_average_1m"),
)


class PerformanceClient:
    """Resilient telemetry and compute client for the performance service."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ClientConfig()
        cfg = self.config
        self._clock = clock

        self.dispatcher = EventDispatcher()
        self.executor = RequestExecutor(cfg.base_url, session, cfg.request_timeout)
        self.breakers = CircuitBreakerRegistry(cfg.circuit_breaker, clock=monotonic)
        self.history_store = HistoryStore(cfg.history_capacity)
        self.alerts = AlertEngine(cfg.alert_rules, self.dispatcher, cfg.alert_history_limit)

        self._snapshots: RequestCoalescer[PerformanceSnapshot] = RequestCoalescer(
            TTLCache(maxsize=1, ttl_seconds=cfg.snapshot_ttl, clock=monotonic),
            name="snapshot",
        )
        self._system_info: RequestCoalescer[dict] = RequestCoalescer(
            TTLCache(maxsize=1, ttl_seconds=cfg.system_info_ttl, clock=monotonic),
            name="system_info",
        )
        self._results: RequestCoalescer[FractalResponse] = RequestCoalescer(
            TTLCache(
                maxsize=cfg.result_cache_maxsize,
                ttl_seconds=cfg.result_cache_ttl,
                clock=monotonic,
            ),
            precision=cfg.key_precision,
            name="fractals",
        )

        self.poller = MetricsPoller(
            lambda: self._fetch_snapshot(use_cache=False),
            self.history_store,
            self.alerts,
            self.dispatcher,
            interval=cfg.poll_interval,
            clock=clock,
        )
        self._sweeper: Optional[asyncio.Task] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Request stack
    # ------------------------------------------------------------------

    async def _request(
        self,
        endpoint: str,
        *,
        retry: Optional[RetryConfig] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        """Run one logical request through retry, circuit breaker and executor."""
        method = kwargs.get("method", "GET")
        return await retry_async(
            lambda: self.breakers.guard(
                endpoint, lambda: self.executor.execute(endpoint, **kwargs)
            ),
            retry or self.config.retry,
            operation=operation or f"{method} {endpoint}",
        )

    async def _fetch_snapshot(self, use_cache: bool = True) -> PerformanceSnapshot:
        return await self._snapshots.execute(
            SNAPSHOT_KEY,
            lambda: self._request(METRICS_ENDPOINT, parser=PerformanceSnapshot.from_payload),
            use_cache=use_cache,
        )

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    async def get_current_metrics(self, force_refresh: bool = False) -> PerformanceSnapshot:
        """Latest snapshot, from memory if fetched within ``snapshot_ttl`` seconds."""
        return await self._fetch_snapshot(use_cache=not force_refresh)

    async def get_system_info(self) -> dict[str, Any]:
        return await self._system_info.execute(
            SYSTEM_INFO_KEY,
            lambda: self._request(SYSTEM_INFO_ENDPOINT, parser=parse_object),
        )

    @log_function(level="INFO")
    async def run_benchmark(self) -> BenchmarkResult:
        """Run the remote benchmark suite. Timeouts are not retried."""
        result = await self._request(
            BENCHMARK_ENDPOINT,
            method="POST",
            body={},
            timeout=self.config.benchmark_timeout,
            parser=BenchmarkResult.from_payload,
            retry=self.config.retry.with_overrides(retry_on_timeout=False),
            operation="benchmark",
        )
        self.dispatcher.publish(EventType.BENCHMARK_COMPLETE, result)
        return result

    async def generate_result(
        self,
        params: Union[FractalRequest, Mapping[str, Any]],
        use_cache: bool = True,
    ) -> FractalResponse:
        """Render a fractal remotely, sharing in-flight and recent identical renders."""
        request = params if isinstance(params, FractalRequest) else FractalRequest.from_params(params)
        key = make_cache_key("fractal", request.cache_key(self.config.key_precision))
        return await self._results.execute(
            key,
            lambda: self._request(
                request.endpoint,
                method="POST",
                body={},
                params=request.query_params(),
                timeout=request.timeout(self.config.max_compute_timeout),
                parser=FractalResponse.from_payload,
                operation=f"render {request.fractal_type.value}",
            ),
            use_cache=use_cache,
        )

    async def generate_mandelbrot(
        self,
        center_x: float = -0.5,
        center_y: float = 0.0,
        zoom: float = 1.0,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        max_iterations: Optional[int] = None,
    ) -> FractalResponse:
        return await self.generate_result(
            FractalRequest(
                FractalType.MANDELBROT,
                center_x,
                center_y,
                zoom,
                width=width,
                height=height,
                max_iterations=max_iterations or optimal_iterations(zoom, FractalType.MANDELBROT),
            )
        )

    async def generate_julia(
        self,
        c_real: float = -0.7,
        c_imag: float = 0.27015,
        center_x: float = 0.0,
        center_y: float = 0.0,
        zoom: float = 1.0,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        max_iterations: Optional[int] = None,
    ) -> FractalResponse:
        return await self.generate_result(
            FractalRequest(
                FractalType.JULIA,
                center_x,
                center_y,
                zoom,
                width=width,
                height=height,
                max_iterations=max_iterations or optimal_iterations(zoom, FractalType.JULIA),
                c_real=c_real,
                c_imag=c_imag,
            )
        )

    def get_presets(self) -> list[FractalPreset]:
        return list(PRESETS)

    async def health_check(self) -> dict[str, Any]:
        """Probe the service health endpoint. Never raises."""
        try:
            body = await self._request(
                HEALTH_ENDPOINT,
                parser=parse_object,
                retry=self.config.retry.with_overrides(max_retries=0),
                operation="health check",
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "timestamp": epoch_to_iso(self._clock()),
                "error": str(e),
            }
        body.setdefault("status", "healthy")
        body.setdefault("timestamp", epoch_to_iso(self._clock()))
        return body

    # ------------------------------------------------------------------
    # Events and alerts
    # ------------------------------------------------------------------

    def subscribe(self, event: EventName, callback: Callable[[Any], Any]) -> Callable[[], None]:
        return self.dispatcher.subscribe(event, callback)

    def resolve_alert(self, alert_id: str) -> bool:
        return self.alerts.resolve_alert(alert_id)

    def clear_alert(self, alert_id: str) -> bool:
        return self.alerts.clear_alert(alert_id)

    def get_active_alerts(self) -> list[Alert]:
        return self.alerts.get_active_alerts()

    def get_alert_history(self) -> list[Alert]:
        return self.alerts.get_alert_history()

    def update_alert_rules(self, rules: Iterable[AlertRule]) -> None:
        self.alerts.update_rules(rules)

    # ------------------------------------------------------------------
    # History views
    # ------------------------------------------------------------------

    def latest(self, metric: str) -> Optional[MetricSample]:
        return self.history_store.latest(metric)

    def history(
        self,
        metric: str,
        since: Optional[float] = None,
        until: Optional[float] = None,
    ) -> list[MetricSample]:
        return self.history_store.history(metric, since, until)

    def summary(self, metric: str) -> Optional[MetricSummary]:
        return self.history_store.summary(metric)

    def analyze_performance(
        self,
        metrics: Union[SystemMetrics, PerformanceSnapshot, None] = None,
    ) -> Optional[PerformanceAnalysis]:
        """Score ``metrics``, or the last polled snapshot when omitted."""
        metrics = metrics or self.poller.last_snapshot
        if metrics is None:
            return None
        return analyze_performance(metrics)

    def compare_with_history(
        self,
        metrics: Union[SystemMetrics, PerformanceSnapshot],
        window_seconds: float = 3600.0,
    ) -> HistoricalComparison:
        return compare_with_history(self.history_store, metrics, since=self._clock() - window_seconds)

    def export_metrics(self, format: str = "json") -> str:
        """Export the last 100 polled points as ``"json"`` or ``"csv"``."""
        metric_names = [name for _, name in EXPORT_COLUMNS]
        rows = self.history_store.rows(metric_names, limit=EXPORT_LIMIT)

        if format == "json":
            current = self.poller.last_snapshot
            data = {
                "current": current.system.to_dict() if current else None,
                "history": [
                    {**row, "timestamp": epoch_to_iso(row["timestamp"])} for row in rows  # type: ignore[arg-type]
                ],
                "alerts": [alert.to_dict() for alert in self.get_active_alerts()],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            return json.dumps(data, indent=2)

        if format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(["timestamp", *(column for column, _ in EXPORT_COLUMNS)])
            for row in rows:
                writer.writerow(
                    [epoch_to_iso(row["timestamp"]), *(row.get(name, "") for name in metric_names)]  # type: ignore[arg-type]
                )
            return buffer.getvalue().rstrip("\n")

        raise ValueError(f"Unsupported export format: {format!r}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "snapshot": self._snapshots.stats,
            "system_info": self._system_info.stats,
            "fractals": self._results.stats,
            "active_alerts": len(self.get_active_alerts()),
            "subscribers": self.dispatcher.subscriber_count(),
            "history_points": len(self.history_store),
        }

    def get_circuit_status(self) -> dict[str, Any]:
        return self.breakers.get_metrics()

    def clear_cache(self) -> int:
        """Drop every cached response. Returns the number of entries removed."""
        return sum(
            coalescer.cache.clear()
            for coalescer in (self._snapshots, self._system_info, self._results)
        )

    def sweep_caches(self) -> int:
        return sum(
            coalescer.cache.sweep()
            for coalescer in (self._snapshots, self._system_info, self._results)
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cache_sweep_interval)
            self.sweep_caches()

    async def start(self) -> None:
        """Start background polling and periodic cache sweeping."""
        if self._closed:
            raise RuntimeError("PerformanceClient is closed")
        self.poller.start()
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.ensure_future(self._sweep_loop())

    async def stop(self) -> None:
        await self.poller.stop()
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

    async def close(self) -> None:
        """Stop background work, abandon in-flight renders and close the session."""
        if self._closed:
            return
        self._closed = True
        await self.stop()
        for coalescer in (self._snapshots, self._system_info, self._results):
            await coalescer.cancel_all()
        await self.executor.close()

    async def __aenter__(self) -> PerformanceClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


__all__ = ["PerformanceClient", "METRICS_ENDPOINT", "SYSTEM_INFO_ENDPOINT", "BENCHMARK_ENDPOINT"]
