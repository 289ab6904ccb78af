"""
Request Analytics Middleware

Router middleware `(request, call_next) -> response` that:
1. passes excluded paths straight through,
2. serves the dashboard at its configured path,
3. times every other request and hands sampled events to the engine
   without waiting for the write.

A request is recorded when the sampler accepts it, when it failed
(status >= 400) or when it was slow. Recording never changes the response.
"""

from __future__ import annotations

import time
from typing import Optional

from requestiq.analytics.engine import AnalyticsEngine
from requestiq.analytics.models import AnalyticsEvent
from requestiq.api.dashboard import DashboardHandler
from requestiq.api.router import Handler, Request, Response
from requestiq.core import constants as C
from requestiq.core.config import RequestIQConfig
from requestiq.core.types import Clock, system_clock
from requestiq.observability.logging import StructuredLogger
from requestiq.sampling import RequestSampler

logger = StructuredLogger("requestiq.api.middleware")

IP_HEADERS = ("x-forwarded-for", "x-real-ip")
COUNTRY_HEADERS = ("x-vercel-ip-country", "cf-ipcountry")


def client_ip(request: Request) -> Optional[str]:
    for name in IP_HEADERS:
        value = request.header(name)
        if value:
            # x-forwarded-for: client, proxy1, proxy2
            first = value.split(",")[0].strip()
            if first:
                return first
    return None


def client_country(request: Request) -> Optional[str]:
    for name in COUNTRY_HEADERS:
        value = request.header(name)
        if value and value.strip():
            return value.strip().upper()
    return None


class RequestIQMiddleware:
    """
    Usage:
        router = RequestIQRouter()
        router.use(RequestIQMiddleware(config, sampler, engine, dashboard))
    """

    __slots__ = ("_config", "_sampler", "_engine", "_dashboard", "_clock")

    def __init__(
        self,
        config: RequestIQConfig,
        sampler: RequestSampler,
        engine: AnalyticsEngine,
        dashboard: Optional[DashboardHandler] = None,
        clock: Clock = system_clock,
    ) -> None:
        self._config = config
        self._sampler = sampler
        self._engine = engine
        self._dashboard = dashboard
        self._clock = clock

    async def __call__(self, request: Request, call_next: Handler) -> Response:
        path = request.path

        if self._sampler.should_exclude_path(path):
            return await call_next(request)

        if (
            self._dashboard is not None
            and self._config.dashboard.enabled
            and path == self._config.dashboard.path
        ):
            return await self._dashboard.handle(request)

        timestamp = self._clock()
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status
            return response
        finally:
            duration = (time.perf_counter() - start) * 1000
            self._collect(request, timestamp, status, duration)

    def should_record(self, path: str, status: int, duration: float) -> bool:
        return (
            self._sampler.should_sample(path, duration)
            or status >= C.ERROR_STATUS_MIN
            or duration > self._config.sampling.slow_threshold_ms
        )

    def _collect(self, request: Request, timestamp: int, status: int, duration: float) -> None:
        if not self.should_record(request.path, status, duration):
            return
        event = AnalyticsEvent(
            timestamp=timestamp,
            path=request.path,
            method=request.method,
            status_code=status,
            duration=round(duration, 3),
            ip=client_ip(request),
            country=client_country(request),
            user_agent=request.header("user-agent"),
        )
        with StructuredLogger.context(request_id=request.header("x-request-id")):
            logger.debug("analytics event submitted", path=event.path, status=status)
        self._engine.submit(event)
