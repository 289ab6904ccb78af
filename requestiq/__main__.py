"""
RequestIQ CLI Entrypoint

Commands:
    python -m requestiq query       Aggregate metrics for the last N hours
    python -m requestiq top         Top paths / countries / methods
    python -m requestiq timeseries  Per-bucket series for one metric
    python -m requestiq sweep       Delete buckets past retention
    python -m requestiq demo        Drive the middleware against an in-memory store

Connection settings come from REQUESTIQ_* environment variables
(see RequestIQConfig.from_env); --redis-url overrides the URL.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
from dataclasses import replace
from typing import Awaitable, Callable, Optional, Sequence

from requestiq import __version__
from requestiq.analytics.engine import AnalyticsEngine
from requestiq.analytics.models import Granularity, QueryFilters, TimeWindow
from requestiq.api.router import Request, Response
from requestiq.app import create_app
from requestiq.core.config import RequestIQConfig
from requestiq.core.errors import ConfigError
from requestiq.core.types import system_clock
from requestiq.observability.logging import LogLevel, setup_logging
from requestiq.storage.memory import InMemoryBackend
from requestiq.storage.redis_store import RedisStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="requestiq",
        description="Request analytics on Redis",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--redis-url",
        type=str,
        default=None,
        help="Redis URL (default: REQUESTIQ_REDIS_URL or localhost:6379)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print raw JSON",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    query_parser = subparsers.add_parser("query", help="Aggregate metrics")
    _add_window_args(query_parser)

    top_parser = subparsers.add_parser("top", help="Top entries")
    _add_window_args(top_parser)
    top_parser.add_argument(
        "--kind",
        choices=["paths", "countries", "methods"],
        default="paths",
        help="Ranking to read (default: paths)",
    )
    top_parser.add_argument(
        "--limit", "-n",
        type=int,
        default=10,
        help="Entries to show (default: 10)",
    )

    series_parser = subparsers.add_parser("timeseries", help="Per-bucket series")
    _add_window_args(series_parser)
    series_parser.add_argument(
        "--metric",
        choices=["requests", "errors", "slow", "duration", "unique_clients", "timeseries"],
        default="requests",
        help="Series metric (default: requests)",
    )

    sweep_parser = subparsers.add_parser("sweep", help="Delete expired buckets")
    sweep_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep sweeping every storage.sweep_interval_s seconds",
    )

    demo_parser = subparsers.add_parser("demo", help="In-memory end-to-end demo")
    demo_parser.add_argument(
        "--requests",
        type=int,
        default=500,
        help="Simulated requests (default: 500)",
    )
    demo_parser.add_argument(
        "--seed",
        type=int,
        default=7,
        help="Random seed (default: 7)",
    )
    return parser


def _add_window_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--hours",
        type=float,
        default=1.0,
        help="Window length ending now (default: 1)",
    )
    parser.add_argument(
        "--granularity", "-g",
        choices=[g.value for g in Granularity],
        default="minute",
        help="Bucket granularity (default: minute)",
    )


# =============================================================================
# COMMANDS
# =============================================================================
async def _cmd_query(engine: AnalyticsEngine, args: argparse.Namespace) -> int:
    window = TimeWindow.last_hours(args.hours, system_clock())
    result = await engine.query_aggregate(
        QueryFilters(time_window=window, granularity=Granularity(args.granularity))
    )
    if result.is_err():
        print(f"Query failed: {result.error}", file=sys.stderr)
        return 1
    data = result.value.to_dict()
    if args.json:
        print(json.dumps(data, indent=2))
        return 0
    print(f"Requests:        {data['totalRequests']}")
    print(f"Slow:            {data['slowRequests']}")
    print(f"Error rate:      {data['errorRate'] * 100:.2f}%")
    print(f"Avg duration:    {data['averageDuration']:.1f}ms")
    print(f"Unique clients:  {data['uniqueClients']}")
    print("Percentiles:     " + "  ".join(f"{k}={v:g}ms" for k, v in data["percentiles"].items()))
    print(f"Buckets:         {data['bucketsScanned']}/{data['bucketsExpected']}"
          + ("" if data["complete"] else " (partial)"))
    return 0


async def _cmd_top(engine: AnalyticsEngine, args: argparse.Namespace) -> int:
    window = TimeWindow.last_hours(args.hours, system_clock())
    result = await engine.top_entries(
        args.kind, window, args.limit, Granularity(args.granularity)
    )
    if result.is_err():
        print(f"Query failed: {result.error}", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps([{"label": e.label, "count": e.count} for e in result.value], indent=2))
        return 0
    for entry in result.value:
        print(f"{entry.count:>10}  {entry.label}")
    return 0


async def _cmd_timeseries(engine: AnalyticsEngine, args: argparse.Namespace) -> int:
    window = TimeWindow.last_hours(args.hours, system_clock())
    result = await engine.time_series(args.metric, window, Granularity(args.granularity))
    if result.is_err():
        print(f"Query failed: {result.error}", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps([{"timestamp": p.timestamp, "value": p.value} for p in result.value]))
        return 0
    for point in result.value:
        print(f"{point.timestamp}  {point.value:g}")
    return 0


async def _cmd_sweep(engine: AnalyticsEngine, args: argparse.Namespace) -> int:
    if args.loop:
        stop = asyncio.Event()
        await engine.run_sweeper(stop)
        return 0
    result = await engine.sweep()
    if result.is_err():
        print(f"Sweep failed: {result.error}", file=sys.stderr)
        return 1
    print(f"Deleted {result.value} expired keys")
    return 0


async def _run_demo(config: RequestIQConfig, args: argparse.Namespace) -> int:
    """Push simulated traffic through router + middleware into an in-memory store."""
    rng = random.Random(args.seed)
    backend = InMemoryBackend()
    app = create_app(config, backend, rng=rng.random)

    paths = ["/", "/api/users", "/api/orders", "/api/search", "/health"]
    countries = ["US", "DE", "IN", "BR", "JP"]

    @app.router.route("/", methods=("GET", "POST"))
    @app.router.route("/{section}", methods=("GET", "POST"))
    @app.router.route("/api/{resource}", methods=("GET", "POST"))
    async def handler(request: Request) -> Response:
        if rng.random() < 0.05:
            return Response.error("upstream failure", status=502)
        return Response.json({"ok": True})

    for i in range(args.requests):
        request = Request.from_raw(
            rng.choice(["GET", "GET", "GET", "POST"]),
            f"http://localhost{rng.choice(paths)}",
            headers={
                "x-forwarded-for": f"10.0.{rng.randint(0, 3)}.{rng.randint(1, 60)}",
                "cf-ipcountry": rng.choice(countries),
            },
        )
        await app.router.dispatch(request)
    await app.engine.drain()

    response = await app.router.dispatch(
        Request.from_raw("GET", f"http://localhost{config.dashboard.path}?action=metrics&hours=1")
    )
    data = response.json_body()
    print(json.dumps(data, indent=2) if args.json else
          f"Recorded {data['totalRequests']} of {args.requests} requests "
          f"(error rate {data['errorRate'] * 100:.1f}%, "
          f"p95 {data['percentiles'].get('p95', 0):g}ms, "
          f"{data['uniqueClients']} clients)")
    return 0


_COMMANDS: dict[str, Callable[[AnalyticsEngine, argparse.Namespace], Awaitable[int]]] = {
    "query": _cmd_query,
    "top": _cmd_top,
    "timeseries": _cmd_timeseries,
    "sweep": _cmd_sweep,
}


async def _run(config: RequestIQConfig, args: argparse.Namespace) -> int:
    if args.command == "demo":
        return await _run_demo(config, args)

    store = RedisStore(config.redis)
    connected = await store.connect()
    if connected.is_err():
        print(f"Cannot connect to Redis: {connected.error}", file=sys.stderr)
        return 2
    try:
        engine = AnalyticsEngine(store.client, config.storage)
        return await _COMMANDS[args.command](engine, args)
    finally:
        await store.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    loaded = RequestIQConfig.from_env()
    if loaded.is_err():
        print(f"Configuration error: {loaded.error}", file=sys.stderr)
        return 2
    config = loaded.unwrap()
    if args.redis_url:
        try:
            config = replace(config, redis=replace(config.redis, url=args.redis_url))
        except ConfigError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 2
    validation = config.validate()
    if validation.is_err():
        print(f"Configuration error: {validation.error}", file=sys.stderr)
        return 2

    setup_logging(
        LogLevel.parse(config.observability.log_level),
        json_output=config.observability.log_json,
    )
    try:
        return asyncio.run(_run(config, args))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


def run() -> None:
    """Synchronous entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
