"""
Dashboard Handler

Serves the dashboard page and its JSON API from one path:

| query                                                 | response             |
|-------------------------------------------------------|----------------------|
| (none)                                                | HTML page            |
| ?action=metrics&hours=N                               | AggregateResult JSON |
| ?action=dashboard-data&hours=N                        | AggregateResult JSON |
| ?action=top&kind=paths&limit=N&hours=N                | ranked entries       |
| ?action=timeseries&metric=requests&granularity=minute | series points        |
| ?action=percentiles&hours=N                           | {"p50": ...}         |

`hours` defaults to 24. Windows longer than a day are read at hour
granularity unless `granularity` is given.

Status codes: 401 on failed auth, 400 on bad parameters, 503 when the
store cannot be read (aggregate responses then carry the
"data unavailable" marker).
"""

from __future__ import annotations

import math
from typing import Optional

from requestiq.analytics.engine import AnalyticsEngine
from requestiq.analytics.models import AggregateResult, Granularity, QueryFilters, TimeWindow
from requestiq.api.auth import BasicAuthenticator
from requestiq.api.html import dashboard_html
from requestiq.api.router import Request, Response
from requestiq.core.config import DashboardConfig
from requestiq.core.errors import ErrorCode, QueryError
from requestiq.core.types import Clock, system_clock
from requestiq.observability.logging import StructuredLogger

logger = StructuredLogger("requestiq.api.dashboard")

DEFAULT_HOURS = 24
AGGREGATE_ACTIONS = ("metrics", "dashboard-data")


class BadParameter(ValueError):
    """Query string value that cannot be used."""


class DashboardHandler:
    __slots__ = ("_config", "_engine", "_auth", "_clock")

    def __init__(
        self,
        config: DashboardConfig,
        engine: AnalyticsEngine,
        authenticator: Optional[BasicAuthenticator] = None,
        clock: Clock = system_clock,
    ) -> None:
        self._config = config
        self._engine = engine
        self._auth = authenticator or BasicAuthenticator(config)
        self._clock = clock

    @property
    def path(self) -> str:
        return self._config.path

    async def handle(self, request: Request) -> Response:
        if not self._auth.is_valid(request.header("authorization")):
            return Response.text(
                "Unauthorized",
                status=401,
                headers={"www-authenticate": self._auth.challenge},
            )

        action = request.query("action")
        try:
            if action in AGGREGATE_ACTIONS:
                return await self._aggregate(request)
            if action == "top":
                return await self._top(request)
            if action == "timeseries":
                return await self._timeseries(request)
            if action == "percentiles":
                return await self._percentiles(request)
        except BadParameter as e:
            return Response.error(str(e), status=400)

        return Response.html(dashboard_html(self._config.path))

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------
    async def _aggregate(self, request: Request) -> Response:
        hours = _positive_float(request, "hours", DEFAULT_HOURS)
        granularity = self._granularity(request, hours)
        window = TimeWindow.last_hours(hours, self._clock())

        result = await self._engine.query_aggregate(
            QueryFilters(time_window=window, granularity=granularity)
        )
        if result.is_err():
            error = result.error
            if error.code is ErrorCode.QUERY_INVALID_FILTER:
                return Response.error(error.message, status=400)
            logger.warning("dashboard data unavailable", **error.log_fields())
            return Response.json(AggregateResult.unavailable(error.message).to_dict(), status=503)
        return Response.json(result.value.to_dict())

    async def _top(self, request: Request) -> Response:
        hours = _positive_float(request, "hours", DEFAULT_HOURS)
        limit = _positive_int(request, "limit", self._engine.config.top_n)
        kind = request.query("kind", "paths")
        window = TimeWindow.last_hours(hours, self._clock())

        result = await self._engine.top_entries(
            kind, window, limit, self._granularity(request, hours)
        )
        if result.is_err():
            return _query_error(result.error)
        return Response.json({
            "kind": kind,
            "entries": [{"label": e.label, "count": e.count} for e in result.value],
        })

    async def _timeseries(self, request: Request) -> Response:
        hours = _positive_float(request, "hours", DEFAULT_HOURS)
        metric = request.query("metric", "requests")
        granularity = self._granularity(request, hours)
        window = TimeWindow.last_hours(hours, self._clock())

        result = await self._engine.time_series(metric, window, granularity)
        if result.is_err():
            return _query_error(result.error)
        return Response.json({
            "metric": metric,
            "granularity": granularity.value,
            "points": [{"timestamp": p.timestamp, "value": p.value} for p in result.value],
        })

    async def _percentiles(self, request: Request) -> Response:
        hours = _positive_float(request, "hours", DEFAULT_HOURS)
        window = TimeWindow.last_hours(hours, self._clock())
        result = await self._engine.percentiles(
            window, granularity=self._granularity(request, hours)
        )
        if result.is_err():
            return _query_error(result.error)
        return Response.json(result.value)

    @staticmethod
    def _granularity(request: Request, hours: float) -> Granularity:
        raw = request.query("granularity")
        if raw is None:
            return Granularity.MINUTE if hours <= 24 else Granularity.HOUR
        try:
            return Granularity.parse(raw)
        except ValueError:
            raise BadParameter(f"granularity must be minute, hour or day (got {raw!r})") from None


def _query_error(error: QueryError) -> Response:
    if error.code is ErrorCode.QUERY_INVALID_FILTER:
        return Response.error(error.message, status=400)
    logger.warning("dashboard query failed", **error.log_fields())
    return Response.json({"error": error.message, "available": False}, status=503)


def _positive_float(request: Request, name: str, default: float) -> float:
    raw = request.query(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise BadParameter(f"{name} must be a number (got {raw!r})") from None
    if not (value > 0 and math.isfinite(value)):
        raise BadParameter(f"{name} must be > 0 (got {raw!r})")
    return value


def _positive_int(request: Request, name: str, default: int) -> int:
    raw = request.query(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise BadParameter(f"{name} must be an integer (got {raw!r})") from None
    if value <= 0:
        raise BadParameter(f"{name} must be > 0 (got {raw!r})")
    return value
