"""Shared fixtures: a frozen clock, an in-memory backend and an engine over it."""

from __future__ import annotations

from dataclasses import replace

import pytest

from requestiq.analytics.engine import AnalyticsEngine
from requestiq.analytics.models import AnalyticsEvent
from requestiq.core.config import StorageConfig
from requestiq.core.types import ManualClock
from requestiq.storage.memory import InMemoryBackend

# 2024-01-01T12:30:15Z
T0 = 1_704_112_215_000
MINUTE = 60_000
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def make_event(
    timestamp: int = T0,
    path: str = "/a",
    method: str = "GET",
    status_code: int = 200,
    duration: float = 50,
    ip: str | None = "10.0.0.1",
    country: str | None = "US",
) -> AnalyticsEvent:
    return AnalyticsEvent(
        timestamp=timestamp,
        path=path,
        method=method,
        status_code=status_code,
        duration=duration,
        ip=ip,
        country=country,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def backend(clock: ManualClock) -> InMemoryBackend:
    return InMemoryBackend(clock=clock)


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig()


@pytest.fixture
def engine(backend: InMemoryBackend, storage_config: StorageConfig, clock: ManualClock) -> AnalyticsEngine:
    return AnalyticsEngine(backend, storage_config, clock=clock)


@pytest.fixture
def exact_engine(backend: InMemoryBackend, clock: ManualClock) -> AnalyticsEngine:
    return AnalyticsEngine(backend, replace(StorageConfig(), identity_strategy="exact"), clock=clock)
