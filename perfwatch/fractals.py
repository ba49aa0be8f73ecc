"""
Request and response types for remotely computed fractal renders.

The rendering itself happens on the service; this module only describes
requests, derives their canonical cache key and allowed timeout, and
validates what comes back.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from perfwatch.cache import canonical_params_key
from perfwatch.models import ShapeChecker
from perfwatch.serialization import SerializableMixin

DEFAULT_WIDTH = 800
DEFAULT_HEIGHT = 600

BASE_TIMEOUT_SECONDS = 30.0
MAX_TIMEOUT_SECONDS = 120.0


class FractalType(str, Enum):
    MANDELBROT = "mandelbrot"
    JULIA = "julia"


def optimal_iterations(zoom: float, fractal_type: FractalType = FractalType.MANDELBROT) -> int:
    """Iteration budget that keeps detail visible as zoom grows, in [50, 2000]."""
    base = 100 if fractal_type == FractalType.MANDELBROT else 150
    zoom_factor = math.log10(max(1.0, zoom))
    return max(50, min(2000, int(base + zoom_factor * 50)))


@dataclass(frozen=True)
class FractalRequest(SerializableMixin):
    """Parameters of one render. Julia sets also need ``c_real``/``c_imag``."""

    fractal_type: FractalType
    center_x: float
    center_y: float
    zoom: float
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    max_iterations: int = 100
    c_real: Optional[float] = None
    c_imag: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.fractal_type, FractalType):
            object.__setattr__(self, "fractal_type", FractalType(self.fractal_type))
        for name in ("center_x", "center_y", "zoom", "c_real", "c_imag"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, float(value))
        if self.width <= 0 or self.height <= 0:
            raise ValueError("width and height must be positive")
        if self.zoom <= 0:
            raise ValueError("zoom must be positive")
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if self.fractal_type == FractalType.JULIA:
            if self.c_real is None:
                object.__setattr__(self, "c_real", 0.0)
            if self.c_imag is None:
                object.__setattr__(self, "c_imag", 0.0)

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> FractalRequest:
        """Build a request from a loose mapping, filling defaults.

        ``max_iterations`` defaults to :func:`optimal_iterations` for the zoom.
        """
        fractal_type = FractalType(params.get("fractal_type", FractalType.MANDELBROT))
        zoom = float(params.get("zoom", 1.0))
        max_iterations = params.get("max_iterations") or optimal_iterations(zoom, fractal_type)
        c_real = params.get("c_real")
        c_imag = params.get("c_imag")
        return cls(
            fractal_type=fractal_type,
            center_x=float(params.get("center_x", 0.0)),
            center_y=float(params.get("center_y", 0.0)),
            zoom=zoom,
            width=int(params.get("width") or DEFAULT_WIDTH),
            height=int(params.get("height") or DEFAULT_HEIGHT),
            max_iterations=int(max_iterations),
            c_real=None if c_real is None else float(c_real),
            c_imag=None if c_imag is None else float(c_imag),
        )

    @property
    def endpoint(self) -> str:
        return f"/api/fractals/{self.fractal_type.value}"

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def query_params(self) -> dict[str, str]:
        params = {
            "width": str(self.width),
            "height": str(self.height),
            "center_x": repr(self.center_x),
            "center_y": repr(self.center_y),
            "zoom": repr(self.zoom),
            "max_iterations": str(self.max_iterations),
        }
        if self.fractal_type == FractalType.JULIA:
            params["c_real"] = repr(self.c_real)
            params["c_imag"] = repr(self.c_imag)
        return params

    def cache_key(self, precision: int = 10) -> str:
        """Canonical key; Julia constants only take part for Julia renders."""
        params: dict[str, Any] = {
            "type": self.fractal_type.value,
            "w": self.width,
            "h": self.height,
            "cx": self.center_x,
            "cy": self.center_y,
            "z": self.zoom,
            "i": self.max_iterations,
        }
        if self.fractal_type == FractalType.JULIA:
            params["cr"] = self.c_real
            params["ci"] = self.c_imag
        return canonical_params_key(params, precision)

    def timeout(self, max_timeout: float = MAX_TIMEOUT_SECONDS) -> float:
        """Allowed wall time, growing with pixels, iterations and zoom depth."""
        complexity = self.max_iterations / 100
        zoom_complexity = math.log10(max(1.0, self.zoom))
        extra = (self.pixel_count / 100_000) * complexity * zoom_complexity
        return min(BASE_TIMEOUT_SECONDS + extra, max_timeout)


@dataclass(frozen=True)
class FractalPerformance(SerializableMixin):
    pixels_per_second: float
    parallel_efficiency: float = 0.0
    memory_usage_mb: float = 0.0
    cpu_utilization: float = 0.0


@dataclass(frozen=True)
class FractalResponse(SerializableMixin):
    data: list[int]
    width: int
    height: int
    computation_time_ms: float
    performance_metrics: FractalPerformance
    zoom_level: Optional[float] = None
    parameters: dict[str, Any] = field(default_factory=dict)

    _exclude_fields = ("data",)

    @classmethod
    def from_payload(cls, data: Any) -> FractalResponse:
        checker = ShapeChecker("FractalResponse")
        body = checker.mapping(data)
        pixels = body.get("data")
        if not isinstance(pixels, list):
            checker.errors.append("data: expected array")
            pixels = []
        width = checker.integer(body, "width")
        height = checker.integer(body, "height")
        computation_time = checker.number(body, "computation_time_ms")
        perf_body = checker.mapping(body.get("performance_metrics"), "performance_metrics")
        pixels_per_second = checker.number(perf_body, "pixels_per_second")
        parameters = body.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            checker.errors.append("parameters: expected object")
            parameters = {}
        checker.check()
        return cls(
            data=pixels,
            width=width,  # type: ignore[arg-type]
            height=height,  # type: ignore[arg-type]
            computation_time_ms=computation_time,  # type: ignore[arg-type]
            performance_metrics=FractalPerformance(
                pixels_per_second=pixels_per_second,  # type: ignore[arg-type]
                parallel_efficiency=checker.number(perf_body, "parallel_efficiency", False) or 0.0,
                memory_usage_mb=checker.number(perf_body, "memory_usage_mb", False) or 0.0,
                cpu_utilization=checker.number(perf_body, "cpu_utilization", False) or 0.0,
            ),
            zoom_level=checker.number(body, "zoom_level", required=False),
            parameters=dict(parameters),
        )

    def performance_rating(self) -> str:
        pps = self.performance_metrics.pixels_per_second
        if pps > 10000:
            return "Exceptional"
        if pps > 5000:
            return "Excellent"
        if pps > 2000:
            return "Very Good"
        if pps > 1000:
            return "Good"
        if pps > 500:
            return "Fair"
        return "Needs Optimization"


@dataclass(frozen=True)
class FractalPreset:
    name: str
    description: str
    request: FractalRequest


PRESETS: tuple[FractalPreset, ...] = (
    FractalPreset(
        "Classic Mandelbrot",
        "The classic Mandelbrot set view",
        FractalRequest(FractalType.MANDELBROT, -0.5, 0.0, 1.0, max_iterations=100),
    ),
    FractalPreset(
        "Seahorse Valley",
        "Intricate spiral patterns in the Mandelbrot set",
        FractalRequest(
            FractalType.MANDELBROT, -0.743643887037151, 0.13182590420533, 1000.0, max_iterations=300
        ),
    ),
    FractalPreset(
        "Lightning",
        "Electric-like branching patterns",
        FractalRequest(FractalType.MANDELBROT, -1.8, 0.0, 100.0, max_iterations=250),
    ),
    FractalPreset(
        "Classic Julia",
        "Traditional Julia set with symmetry",
        FractalRequest(
            FractalType.JULIA, 0.0, 0.0, 1.0, max_iterations=150, c_real=-0.7, c_imag=0.27015
        ),
    ),
    FractalPreset(
        "Dragon Julia",
        "Dragon-like Julia set formation",
        FractalRequest(FractalType.JULIA, 0.0, 0.0, 1.0, max_iterations=200, c_real=-0.8, c_imag=0.156),
    ),
    FractalPreset(
        "Spiral Julia",
        "Spiral patterns",
        FractalRequest(FractalType.JULIA, 0.0, 0.0, 1.0, max_iterations=180, c_real=-0.4, c_imag=0.6),
    ),
)


__all__ = [
    "FractalType",
    "FractalRequest",
    "FractalResponse",
    "FractalPerformance",
    "FractalPreset",
    "PRESETS",
    "optimal_iterations",
]
