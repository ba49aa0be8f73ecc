"""
Typed response models for the performance endpoints.

Every remote payload is turned into a dataclass by a ``from_payload``
constructor that checks the shape and fails closed with
ResponseValidationError instead of passing partial data along.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from perfwatch.exceptions import ResponseValidationError
from perfwatch.serialization import SerializableMixin, epoch_to_iso

# Metrics turned into samples on every poll, with their display units
TRACKED_METRICS: dict[str, str] = {
    "cpu_usage_percent": "%",
    "memory_usage_percent": "%",
    "disk_usage_percent": "%",
    "load_average_1m": "",
    "load_average_5m": "",
    "load_average_15m": "",
    "system_temperature": "°C",
    "average_response_time_ms": "ms",
    "memory_usage_mb": "MB",
}


class ShapeChecker:
    """Collects shape errors for one payload, then raises them together."""

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        self.errors: list[str] = []

    def mapping(self, data: Any, path: str = "$") -> Mapping[str, Any]:
        if not isinstance(data, Mapping):
            self.errors.append(f"{path}: expected object, got {type(data).__name__}")
            return {}
        return data

    def number(self, data: Mapping[str, Any], key: str, required: bool = True) -> Optional[float]:
        value = data.get(key)
        if value is None:
            if required:
                self.errors.append(f"{key}: missing")
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.errors.append(f"{key}: expected number, got {type(value).__name__}")
            return None
        return float(value)

    def integer(self, data: Mapping[str, Any], key: str, required: bool = True) -> Optional[int]:
        value = self.number(data, key, required)
        return None if value is None else int(value)

    def string(self, data: Mapping[str, Any], key: str, required: bool = True) -> Optional[str]:
        value = data.get(key)
        if value is None:
            if required:
                self.errors.append(f"{key}: missing")
            return None
        if not isinstance(value, str):
            self.errors.append(f"{key}: expected string, got {type(value).__name__}")
            return None
        return value

    def check(self) -> None:
        if self.errors:
            raise ResponseValidationError(self.schema_name, self.errors)


@dataclass(frozen=True)
class MetricSample(SerializableMixin):
    """One observation of one metric. Never mutated after creation."""

    timestamp: float
    metric: str
    value: float
    unit: str = ""

    _custom_serializers = {"timestamp": epoch_to_iso}


@dataclass(frozen=True)
class SystemMetrics(SerializableMixin):
    timestamp: str
    cpu_usage_percent: float
    memory_usage_percent: float
    disk_usage_percent: float
    load_average_1m: float
    load_average_5m: float
    load_average_15m: float
    cpu_cores: int
    cpu_threads: Optional[int] = None
    cpu_model: Optional[str] = None
    memory_total_gb: Optional[float] = None
    memory_available_gb: Optional[float] = None
    uptime_seconds: Optional[float] = None
    active_processes: Optional[int] = None
    system_temperature: Optional[float] = None

    @classmethod
    def from_payload(cls, data: Any, checker: Optional[ShapeChecker] = None) -> SystemMetrics:
        own = checker is None
        checker = checker or ShapeChecker("SystemMetrics")
        body = checker.mapping(data, "system")
        kwargs = dict(
            timestamp=checker.string(body, "timestamp"),
            cpu_usage_percent=checker.number(body, "cpu_usage_percent"),
            memory_usage_percent=checker.number(body, "memory_usage_percent"),
            disk_usage_percent=checker.number(body, "disk_usage_percent"),
            load_average_1m=checker.number(body, "load_average_1m"),
            load_average_5m=checker.number(body, "load_average_5m"),
            load_average_15m=checker.number(body, "load_average_15m"),
            cpu_cores=checker.integer(body, "cpu_cores"),
            cpu_threads=checker.integer(body, "cpu_threads", required=False),
            cpu_model=checker.string(body, "cpu_model", required=False),
            memory_total_gb=checker.number(body, "memory_total_gb", required=False),
            memory_available_gb=checker.number(body, "memory_available_gb", required=False),
            uptime_seconds=checker.number(body, "uptime_seconds", required=False),
            active_processes=checker.integer(body, "active_processes", required=False),
            system_temperature=checker.number(body, "system_temperature", required=False),
        )
        if own:
            checker.check()
        return cls(**kwargs)  # type: ignore[arg-type]


@dataclass(frozen=True)
class ApplicationMetrics(SerializableMixin):
    requests_handled: int
    average_response_time_ms: float
    cache_hit_rate: float
    memory_usage_mb: Optional[float] = None
    fractal_computations: Optional[int] = None

    @classmethod
    def from_payload(cls, data: Any, checker: ShapeChecker) -> ApplicationMetrics:
        body = checker.mapping(data, "application")
        return cls(
            requests_handled=checker.integer(body, "requests_handled"),  # type: ignore[arg-type]
            average_response_time_ms=checker.number(body, "average_response_time_ms"),  # type: ignore[arg-type]
            cache_hit_rate=checker.number(body, "cache_hit_rate"),  # type: ignore[arg-type]
            memory_usage_mb=checker.number(body, "memory_usage_mb", required=False),
            fractal_computations=checker.integer(body, "fractal_computations", required=False),
        )


@dataclass(frozen=True)
class PerformanceSnapshot(SerializableMixin):
    """A full reading from the metrics endpoint."""

    timestamp: str
    system: SystemMetrics
    application: Optional[ApplicationMetrics] = None
    hardware: dict[str, Any] = field(default_factory=dict)
    runtime: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any) -> PerformanceSnapshot:
        checker = ShapeChecker("PerformanceSnapshot")
        body = checker.mapping(data)
        timestamp = checker.string(body, "timestamp")
        system = None
        if "system" not in body:
            checker.errors.append("system: missing")
        else:
            system = SystemMetrics.from_payload(body["system"], checker)
        application = None
        if body.get("application") is not None:
            application = ApplicationMetrics.from_payload(body["application"], checker)
        hardware = body.get("hardware") or {}
        runtime = body.get("runtime") or {}
        if not isinstance(hardware, Mapping):
            checker.errors.append("hardware: expected object")
        if not isinstance(runtime, Mapping):
            checker.errors.append("runtime: expected object")
        checker.check()
        return cls(
            timestamp=timestamp,  # type: ignore[arg-type]
            system=system,  # type: ignore[arg-type]
            application=application,
            hardware=dict(hardware),
            runtime=dict(runtime),
        )

    def samples(self, observed_at: float) -> list[MetricSample]:
        """Turn every tracked metric present in this snapshot into a sample."""
        samples = []
        for source in (self.system, self.application):
            if source is None:
                continue
            for name, unit in TRACKED_METRICS.items():
                value = getattr(source, name, None)
                if value is not None:
                    samples.append(MetricSample(observed_at, name, float(value), unit))
        return samples


@dataclass(frozen=True)
class BenchmarkResult(SerializableMixin):
    benchmark_id: str
    timestamp: str
    total_duration_ms: float
    performance_rating: str
    benchmarks: dict[str, Any] = field(default_factory=dict)
    system_info: Any = None

    @classmethod
    def from_payload(cls, data: Any) -> BenchmarkResult:
        checker = ShapeChecker("BenchmarkResult")
        body = checker.mapping(data)
        benchmark_id = checker.string(body, "benchmark_id")
        timestamp = checker.string(body, "timestamp")
        duration = checker.number(body, "total_duration_ms")
        rating = checker.string(body, "performance_rating")
        benchmarks = body.get("benchmarks")
        if not isinstance(benchmarks, Mapping):
            checker.errors.append("benchmarks: expected object")
            benchmarks = {}
        checker.check()
        return cls(
            benchmark_id=benchmark_id,  # type: ignore[arg-type]
            timestamp=timestamp,  # type: ignore[arg-type]
            total_duration_ms=duration,  # type: ignore[arg-type]
            performance_rating=rating,  # type: ignore[arg-type]
            benchmarks=dict(benchmarks),
            system_info=body.get("system_info"),
        )


def parse_object(data: Any) -> dict[str, Any]:
    """Accept any JSON object; reject everything else."""
    checker = ShapeChecker("object")
    body = checker.mapping(data)
    checker.check()
    return dict(body)


__all__ = [
    "TRACKED_METRICS",
    "ShapeChecker",
    "MetricSample",
    "SystemMetrics",
    "ApplicationMetrics",
    "PerformanceSnapshot",
    "BenchmarkResult",
    "parse_object",
]
