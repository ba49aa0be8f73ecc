"""Tests for fractal request and response types."""

import pytest

from perfwatch.exceptions import ResponseValidationError
from perfwatch.fractals import (
    BASE_TIMEOUT_SECONDS,
    PRESETS,
    FractalRequest,
    FractalResponse,
    FractalType,
    optimal_iterations,
)

from conftest import fractal_payload


class TestOptimalIterations:
    def test_grows_with_zoom(self):
        assert optimal_iterations(1.0) == 100
        assert optimal_iterations(1000.0) == 250
        assert optimal_iterations(1.0, FractalType.JULIA) == 150

    def test_bounded(self):
        assert optimal_iterations(1e300) == 2000
        assert optimal_iterations(0.001) == 100


class TestFractalRequest:
    def test_from_params_fills_defaults(self):
        request = FractalRequest.from_params({"zoom": 10.0})
        assert request.fractal_type == FractalType.MANDELBROT
        assert (request.width, request.height) == (800, 600)
        assert request.max_iterations == 150
        assert request.c_real is None

    def test_julia_constants_default_to_zero(self):
        request = FractalRequest.from_params({"fractal_type": "julia"})
        assert request.c_real == 0.0
        assert request.c_imag == 0.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"zoom": 0}, {"width": 0}, {"max_iterations": -1}],
    )
    def test_validation(self, kwargs):
        params = {"fractal_type": "mandelbrot", "center_x": 0.0, "center_y": 0.0, "zoom": 1.0}
        params.update(kwargs)
        with pytest.raises(ValueError):
            FractalRequest(**params)

    def test_endpoint(self):
        assert FractalRequest(FractalType.JULIA, 0, 0, 1).endpoint == "/api/fractals/julia"

    def test_cache_key_ignores_float_noise(self):
        a = FractalRequest(FractalType.MANDELBROT, 0.1 + 0.2, 0.0, 1.0)
        b = FractalRequest(FractalType.MANDELBROT, 0.3, 0.0, 1.0)
        assert a.cache_key() == b.cache_key()

    def test_numeric_fields_coerced_to_float(self):
        request = FractalRequest(FractalType.JULIA, 0, 1, 10, c_real=-1, c_imag=0)
        assert request.zoom == 10.0 and isinstance(request.zoom, float)
        assert isinstance(request.center_x, float)
        assert isinstance(request.c_real, float)
        assert request.cache_key() == FractalRequest(FractalType.JULIA, 0.0, 1.0, 10.0, c_real=-1.0, c_imag=0.0).cache_key()
        assert request.query_params()["zoom"] == "10.0"

    def test_cache_key_distinguishes_parameters(self):
        base = FractalRequest(FractalType.JULIA, 0.0, 0.0, 1.0, c_real=-0.7, c_imag=0.27015)
        other = FractalRequest(FractalType.JULIA, 0.0, 0.0, 1.0, c_real=-0.8, c_imag=0.27015)
        mandelbrot = FractalRequest(FractalType.MANDELBROT, 0.0, 0.0, 1.0)
        assert len({base.cache_key(), other.cache_key(), mandelbrot.cache_key()}) == 3

    def test_mandelbrot_query_has_no_julia_constants(self):
        params = FractalRequest(FractalType.MANDELBROT, -0.5, 0.0, 1.0).query_params()
        assert "c_real" not in params
        assert params["center_x"] == "-0.5"

    def test_timeout_scales_and_caps(self):
        shallow = FractalRequest(FractalType.MANDELBROT, 0.0, 0.0, 1.0)
        deep = FractalRequest(FractalType.MANDELBROT, 0.0, 0.0, 100.0, max_iterations=200)
        huge = FractalRequest(FractalType.MANDELBROT, 0.0, 0.0, 1e12, 4000, 4000, 2000)

        assert shallow.timeout() == BASE_TIMEOUT_SECONDS
        assert BASE_TIMEOUT_SECONDS < deep.timeout() < 120.0
        assert huge.timeout() == 120.0
        assert huge.timeout(max_timeout=60.0) == 60.0


class TestFractalResponse:
    def test_from_payload(self):
        response = FractalResponse.from_payload(fractal_payload(width=2, height=2))
        assert response.width == 2
        assert len(response.data) == 16
        assert response.performance_metrics.pixels_per_second == 6000.0
        assert "data" not in response.to_dict()

    def test_missing_fields_collected(self):
        payload = fractal_payload()
        del payload["width"]
        payload["performance_metrics"] = {}
        with pytest.raises(ResponseValidationError) as exc_info:
            FractalResponse.from_payload(payload)
        assert "width: missing" in exc_info.value.errors
        assert "pixels_per_second: missing" in exc_info.value.errors

    @pytest.mark.parametrize(
        "pps,rating",
        [
            (20000, "Exceptional"),
            (6000, "Excellent"),
            (3000, "Very Good"),
            (1500, "Good"),
            (600, "Fair"),
            (100, "Needs Optimization"),
        ],
    )
    def test_performance_rating(self, pps, rating):
        assert FractalResponse.from_payload(fractal_payload(pixels_per_second=pps)).performance_rating() == rating


def test_presets_cover_both_types():
    types = {preset.request.fractal_type for preset in PRESETS}
    assert types == {FractalType.MANDELBROT, FractalType.JULIA}
    assert all(preset.name for preset in PRESETS)
