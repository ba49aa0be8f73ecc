"""
Command line interface for perfwatch.

Usage:
    perfwatch metrics                  # Print one snapshot as JSON
    perfwatch watch --interval 5       # Poll and print events until Ctrl-C
    perfwatch fractal julia --zoom 10  # Render remotely and print a summary
    perfwatch health                   # Probe the service health endpoint
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Optional, Sequence

from perfwatch.__version__ import __version__
from perfwatch.client import PerformanceClient
from perfwatch.config import ClientConfig
from perfwatch.events import EventType
from perfwatch.exceptions import PerfwatchError
from perfwatch.logging_config import configure_logging


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def cmd_metrics(client: PerformanceClient, args: argparse.Namespace) -> int:
    snapshot = await client.get_current_metrics(force_refresh=True)
    data = snapshot.to_dict()
    if args.analyze:
        analysis = client.analyze_performance(snapshot)
        data["analysis"] = analysis.to_dict() if analysis else None
    _print_json(data)
    return 0


async def cmd_watch(client: PerformanceClient, args: argparse.Namespace) -> int:
    def on_metrics(snapshot: Any) -> None:
        system = snapshot.system
        print(
            f"[{snapshot.timestamp}] cpu={system.cpu_usage_percent:.1f}% "
            f"mem={system.memory_usage_percent:.1f}% "
            f"disk={system.disk_usage_percent:.1f}% "
            f"load={system.load_average_1m:.2f}"
        )

    client.subscribe(EventType.METRICS, on_metrics)
    client.subscribe(EventType.ALERT, lambda a: print(f"ALERT [{a.severity.value}] {a.message}"))
    client.subscribe(EventType.ALERT_CLEARED, lambda a: print(f"CLEARED {a.id}"))
    client.subscribe(EventType.POLL_ERROR, lambda f: print(f"poll failed: {f.message}"))
    client.subscribe(EventType.SERVICE_DEGRADED, lambda f: print(f"service degraded: {f.message}"))

    await client.start()
    try:
        if args.duration:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.Event().wait()
    finally:
        await client.stop()
    return 0


async def cmd_fractal(client: PerformanceClient, args: argparse.Namespace) -> int:
    if args.type == "julia":
        result = await client.generate_julia(
            c_real=args.c_real,
            c_imag=args.c_imag,
            center_x=args.center_x if args.center_x is not None else 0.0,
            center_y=args.center_y,
            zoom=args.zoom,
            width=args.width,
            height=args.height,
            max_iterations=args.max_iterations,
        )
    else:
        result = await client.generate_mandelbrot(
            center_x=args.center_x if args.center_x is not None else -0.5,
            center_y=args.center_y,
            zoom=args.zoom,
            width=args.width,
            height=args.height,
            max_iterations=args.max_iterations,
        )
    summary = result.to_dict()
    summary["rating"] = result.performance_rating()
    _print_json(summary)
    return 0


async def cmd_health(client: PerformanceClient, args: argparse.Namespace) -> int:
    status = await client.health_check()
    _print_json(status)
    return 0 if status.get("status") != "unhealthy" else 1


COMMANDS = {
    "metrics": cmd_metrics,
    "watch": cmd_watch,
    "fractal": cmd_fractal,
    "health": cmd_health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="perfwatch",
        description="Resilient client for the performance dashboard service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"perfwatch {__version__}")
    parser.add_argument(
        "--base-url",
        default=None,
        help="Service base URL (default: $PERFWATCH_BASE_URL or http://localhost:3001)",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: $PERFWATCH_LOG_LEVEL)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    metrics_parser = subparsers.add_parser("metrics", help="Fetch one metrics snapshot")
    metrics_parser.add_argument(
        "--analyze", action="store_true", help="Include health score and bottlenecks"
    )

    watch_parser = subparsers.add_parser("watch", help="Poll metrics and print events")
    watch_parser.add_argument(
        "--interval", "-i",
        type=float,
        default=None,
        help="Seconds between polls (default: $PERFWATCH_POLL_INTERVAL or 12)",
    )
    watch_parser.add_argument(
        "--duration", "-d",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )

    fractal_parser = subparsers.add_parser("fractal", help="Request one fractal render")
    fractal_parser.add_argument("type", choices=["mandelbrot", "julia"])
    fractal_parser.add_argument("--center-x", type=float, default=None)
    fractal_parser.add_argument("--center-y", type=float, default=0.0)
    fractal_parser.add_argument("--zoom", type=float, default=1.0)
    fractal_parser.add_argument("--width", type=int, default=800)
    fractal_parser.add_argument("--height", type=int, default=600)
    fractal_parser.add_argument("--max-iterations", type=int, default=None)
    fractal_parser.add_argument("--c-real", type=float, default=-0.7)
    fractal_parser.add_argument("--c-imag", type=float, default=0.27015)

    subparsers.add_parser("health", help="Check service health")
    return parser


async def run(args: argparse.Namespace) -> int:
    overrides: dict[str, Any] = {}
    if args.base_url:
        overrides["base_url"] = args.base_url.rstrip("/")
    if getattr(args, "interval", None):
        overrides["poll_interval"] = args.interval

    async with PerformanceClient(ClientConfig.from_env(**overrides)) as client:
        return await COMMANDS[args.command](client, args)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    configure_logging(level=args.log_level, json_output=True if args.json_logs else None)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    except PerfwatchError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
