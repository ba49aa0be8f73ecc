"""Tests for the perfwatch command line interface."""

import json

import pytest
from aiohttp import web

from perfwatch.cli import build_parser, main, run

from conftest import fractal_payload, snapshot_payload


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("PERFWATCH_BASE_URL", raising=False)
    monkeypatch.delenv("PERFWATCH_POLL_INTERVAL", raising=False)


def url_of(server):
    return str(server.make_url("")).rstrip("/")


class TestParser:
    def test_fractal_defaults(self):
        args = build_parser().parse_args(["fractal", "julia"])
        assert args.type == "julia"
        assert args.center_x is None
        assert args.zoom == 1.0
        assert args.c_real == -0.7

    def test_watch_options(self):
        args = build_parser().parse_args(["--base-url", "http://x", "watch", "-i", "5", "-d", "1"])
        assert args.base_url == "http://x"
        assert args.interval == 5.0
        assert args.duration == 1.0

    def test_unknown_fractal_type_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["fractal", "sierpinski"])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 2
        assert "usage" in capsys.readouterr().out.lower()


class TestCommands:
    @pytest.mark.asyncio
    async def test_metrics_with_analysis(self, serve, capsys):
        async def handler(request):
            return web.json_response(snapshot_payload(cpu_usage_percent=90.0))

        async with serve([("GET", "/api/performance/metrics", handler)]) as server:
            args = build_parser().parse_args(["--base-url", url_of(server), "metrics", "--analyze"])
            assert await run(args) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["system"]["cpu_usage_percent"] == 90.0
        assert output["analysis"]["bottlenecks"] == ["High CPU usage"]

    @pytest.mark.asyncio
    async def test_fractal_prints_rating(self, serve, capsys):
        async def handler(request):
            assert request.query["center_x"] == "-0.5"
            return web.json_response(fractal_payload(pixels_per_second=700))

        async with serve([("POST", "/api/fractals/mandelbrot", handler)]) as server:
            args = build_parser().parse_args(["--base-url", url_of(server), "fractal", "mandelbrot"])
            assert await run(args) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["rating"] == "Fair"
        assert "data" not in output

    @pytest.mark.asyncio
    async def test_health_exit_code(self, serve, capsys):
        async def handler(request):
            return web.json_response({"message": "down"}, status=503)

        async with serve([("GET", "/health", handler)]) as server:
            args = build_parser().parse_args(["--base-url", url_of(server), "health"])
            assert await run(args) == 1

        assert json.loads(capsys.readouterr().out)["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_watch_runs_for_duration(self, serve, capsys):
        async def handler(request):
            return web.json_response(snapshot_payload())

        async with serve([("GET", "/api/performance/metrics", handler)]) as server:
            args = build_parser().parse_args(
                ["--base-url", url_of(server), "watch", "--interval", "0.01", "--duration", "0.1"]
            )
            assert await run(args) == 0

        assert "cpu=42.0%" in capsys.readouterr().out
