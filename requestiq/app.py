"""
Application Wiring

Builds engine, sampler, dashboard, middleware and router from one
RequestIQConfig over a given backend.

    app = create_app(config, store.client)
    response = await app.router.dispatch(request)
    ...
    await app.engine.drain()
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Optional

from requestiq.analytics.engine import AnalyticsEngine
from requestiq.api.auth import BasicAuthenticator
from requestiq.api.dashboard import DashboardHandler
from requestiq.api.middleware import RequestIQMiddleware
from requestiq.api.router import RequestIQRouter
from requestiq.core.config import RequestIQConfig
from requestiq.core.types import Clock, system_clock
from requestiq.sampling import RequestSampler
from requestiq.storage.protocols import AnalyticsBackend


@dataclass(frozen=True, slots=True)
class RequestIQApp:
    config: RequestIQConfig
    engine: AnalyticsEngine
    sampler: RequestSampler
    dashboard: DashboardHandler
    middleware: RequestIQMiddleware
    router: RequestIQRouter


def create_app(
    config: RequestIQConfig,
    backend: AnalyticsBackend,
    clock: Clock = system_clock,
    rng: Callable[[], float] = random.random,
    router: Optional[RequestIQRouter] = None,
) -> RequestIQApp:
    """
    Wire the request pipeline. Routes registered on `router` (or on the
    returned one) are wrapped by the analytics middleware.
    """
    engine = AnalyticsEngine(backend, config.storage, clock=clock)
    sampler = RequestSampler(config.sampling, rng=rng)
    dashboard = DashboardHandler(
        config.dashboard, engine, BasicAuthenticator(config.dashboard), clock=clock
    )
    middleware = RequestIQMiddleware(config, sampler, engine, dashboard, clock=clock)
    router = router or RequestIQRouter()
    router.use(middleware)
    return RequestIQApp(
        config=config,
        engine=engine,
        sampler=sampler,
        dashboard=dashboard,
        middleware=middleware,
        router=router,
    )
