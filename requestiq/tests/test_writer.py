"""
Unit Tests: Write Path

Tests:
    - Per-bucket fan-out and key layout
    - Sliding TTL on touched keys
    - Replay idempotence of identity sets
    - Single-write and batch failure reporting
"""

from dataclasses import replace

import pytest

from requestiq.analytics.engine import AnalyticsEngine
from requestiq.analytics.models import QueryFilters, TimeWindow
from requestiq.core.config import StorageConfig
from requestiq.core.errors import ErrorCode
from requestiq.storage.memory import InMemoryBackend
from requestiq.tests.conftest import HOUR, T0, make_event

MINUTE_KEY = "requestiq:minute:202401011230"
HOUR_KEY = "requestiq:hour:2024010112"
DAY_KEY = "requestiq:day:20240101"

WINDOW = TimeWindow(T0 - HOUR, T0 + HOUR)


async def _aggregate(engine):
    result = await engine.query_aggregate(QueryFilters(time_window=WINDOW))
    assert result.is_ok()
    return result.value


class TestFanOut:
    """Tests for the keys one event touches."""

    @pytest.mark.asyncio
    async def test_keys_in_every_granularity(self, engine, backend):
        assert (await engine.record_event(make_event())).is_ok()

        keys = await backend.keys()
        for prefix in (MINUTE_KEY, HOUR_KEY, DAY_KEY):
            for field in ("total", "durations", "paths", "methods", "countries", "timeseries", "unique_ips"):
                assert f"{prefix}:{field}" in keys
        assert len(keys) == 21

    @pytest.mark.asyncio
    async def test_optional_fields_skipped(self, engine, backend):
        await engine.record_event(make_event(ip=None, country=None))

        keys = await backend.keys()
        assert not any(k.endswith(":countries") for k in keys)
        assert not any(k.endswith(":unique_ips") for k in keys)
        assert not any(k.endswith(":slow") or k.endswith(":errors") for k in keys)

    @pytest.mark.asyncio
    async def test_every_key_gets_retention_ttl(self, engine, backend):
        await engine.record_event(make_event(status_code=503, duration=2500))

        for key in await backend.keys():
            assert await backend.ttl(key) == 7 * 24 * 3600

    @pytest.mark.asyncio
    async def test_ttl_slides_on_later_writes(self, engine, backend, clock):
        await engine.record_event(make_event())
        clock.advance(HOUR)
        await engine.record_event(make_event(timestamp=T0 + 1))

        assert await backend.ttl(f"{DAY_KEY}:paths") == 7 * 24 * 3600

    @pytest.mark.asyncio
    async def test_counters_and_members(self, engine, backend):
        await engine.record_event(make_event(path="/orders", method="POST", country="DE"))

        assert await backend.zscore(f"{MINUTE_KEY}:paths", "/orders") == 1.0
        assert await backend.zscore(f"{HOUR_KEY}:methods", "POST") == 1.0
        assert await backend.zscore(f"{DAY_KEY}:countries", "DE") == 1.0
        assert await backend.bitcount(f"{MINUTE_KEY}:total") == 1

    @pytest.mark.asyncio
    async def test_single_event_aggregate(self, engine):
        await engine.record_event(make_event())

        result = await _aggregate(engine)
        assert result.total_requests == 1
        assert result.slow_requests == 0
        assert result.error_rate == 0.0

    @pytest.mark.asyncio
    async def test_error_rate(self, engine):
        await engine.record_event(make_event(status_code=500))
        await engine.record_event(make_event(timestamp=T0 + 1, status_code=200))

        result = await _aggregate(engine)
        assert result.total_requests == 2
        assert result.error_requests == 1
        assert result.error_rate == 0.5

    @pytest.mark.asyncio
    async def test_slow_threshold_is_inclusive(self, engine):
        await engine.record_event(make_event(duration=1000))
        await engine.record_event(make_event(timestamp=T0 + 1, duration=999))

        result = await _aggregate(engine)
        assert result.slow_requests == 1

    @pytest.mark.asyncio
    async def test_status_400_is_an_error(self, engine):
        await engine.record_event(make_event(status_code=399))
        await engine.record_event(make_event(timestamp=T0 + 1, status_code=400))

        assert (await _aggregate(engine)).error_requests == 1


class TestReplay:
    """Tests for writing the same event twice."""

    @pytest.mark.asyncio
    async def test_counters_double_identity_does_not(self, engine, backend):
        event = make_event()
        await engine.record_event(event)
        await engine.record_event(event)

        assert await backend.zscore(f"{MINUTE_KEY}:paths", "/a") == 2.0
        assert await backend.zscore(f"{MINUTE_KEY}:methods", "GET") == 2.0
        assert await backend.bitcount(f"{MINUTE_KEY}:total") == 1
        assert (await _aggregate(engine)).total_requests == 1

    @pytest.mark.asyncio
    async def test_exact_strategy_is_idempotent(self, exact_engine, backend):
        event = make_event(status_code=500)
        await exact_engine.record_event(event)
        await exact_engine.record_event(event)

        result = await _aggregate(exact_engine)
        assert result.total_requests == 1
        assert result.error_requests == 1
        assert result.duration_samples == 1


class TestWriteFailures:
    """Tests for single-write failures."""

    @pytest.mark.asyncio
    async def test_invalid_event_rejected_before_io(self, engine, backend):
        result = await engine.record_event(make_event(path=""))

        assert result.is_err()
        assert result.error.code == ErrorCode.WRITE_ENCODING_FAILED
        assert len(backend) == 0
        assert backend.executed_pipelines == 0

    @pytest.mark.asyncio
    async def test_negative_duration_rejected(self, engine):
        result = await engine.record_event(make_event(duration=-1))

        assert result.error.context["field"] == "duration"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [float("nan"), float("inf"), float("-inf")])
    async def test_non_finite_duration_rejected(self, engine, backend, duration):
        result = await engine.record_event(make_event(duration=duration))

        assert result.error.code == ErrorCode.WRITE_ENCODING_FAILED
        assert result.error.context["field"] == "duration"
        assert backend.executed_pipelines == 0

    @pytest.mark.asyncio
    async def test_store_unavailable(self, engine, backend):
        backend.inject_failure("execute")

        result = await engine.record_event(make_event())

        assert result.is_err()
        assert result.error.code == ErrorCode.WRITE_STORE_UNAVAILABLE
        assert engine.stats.write_failures == 1

    @pytest.mark.asyncio
    async def test_timeout(self, clock):
        backend = InMemoryBackend(clock=clock, latency_s=0.2)
        engine = AnalyticsEngine(backend, StorageConfig(write_timeout_ms=20), clock=clock)

        result = await engine.record_event(make_event())

        assert result.is_err()
        assert result.error.code == ErrorCode.WRITE_TIMEOUT
        assert result.error.context["timeout_ms"] == 20

    @pytest.mark.asyncio
    async def test_failure_is_not_retried(self, engine, backend):
        backend.inject_failure("execute", times=1)

        assert (await engine.record_event(make_event())).is_err()
        assert len(backend) == 0
        assert (await engine.record_event(make_event())).is_ok()


class TestBatch:
    """Tests for record_events_batch."""

    EVENTS = [make_event(timestamp=T0 + i, path=f"/p/{i % 7}") for i in range(250)]

    @pytest.mark.asyncio
    async def test_one_pipeline_per_chunk(self, engine, backend):
        result = await engine.record_events_batch(self.EVENTS)

        assert result.is_ok()
        assert result.value == 250
        assert backend.executed_pipelines == 3
        assert engine.stats.events_written == 250

    @pytest.mark.asyncio
    async def test_custom_batch_size(self, backend, clock):
        engine = AnalyticsEngine(backend, StorageConfig(batch_size=50), clock=clock)

        await engine.record_events_batch(self.EVENTS)

        assert backend.executed_pipelines == 5

    @pytest.mark.asyncio
    async def test_empty_batch(self, engine, backend):
        result = await engine.record_events_batch([])

        assert result.is_ok()
        assert result.value == 0
        assert backend.executed_pipelines == 0

    @pytest.mark.asyncio
    async def test_failure_reports_applied_prefix(self, engine, backend):
        backend.inject_failure("execute", after=1)

        result = await engine.record_events_batch(self.EVENTS)

        assert result.is_err()
        error = result.error
        assert error.code == ErrorCode.WRITE_BATCH_FAILED
        assert error.applied == 100
        assert error.context["chunk_index"] == 1
        assert error.context["remaining"] == 150
        assert error.cause.code == ErrorCode.WRITE_STORE_UNAVAILABLE
        assert backend.executed_pipelines == 1

    @pytest.mark.asyncio
    async def test_retry_remaining_completes_batch(self, engine, backend):
        backend.inject_failure("execute", after=1)
        failed = await engine.record_events_batch(self.EVENTS)

        retried = await engine.record_events_batch(self.EVENTS[failed.error.applied:])

        assert retried.is_ok()
        assert retried.value == 150
        assert (await _aggregate(engine)).total_requests == 250

    @pytest.mark.asyncio
    async def test_invalid_event_stops_batch_at_its_index(self, engine):
        events = list(self.EVENTS)
        events[150] = replace(events[150], duration=-5)

        result = await engine.record_events_batch(events)

        assert result.is_err()
        assert result.error.applied == 150
        assert result.error.cause.code == ErrorCode.WRITE_ENCODING_FAILED
        assert (await _aggregate(engine)).total_requests == 150


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
