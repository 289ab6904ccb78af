"""
Unit Tests: Analytics Engine

Tests:
    - Fire-and-forget submission and drain
    - Engine statistics
"""

import asyncio

import pytest

from requestiq.analytics.engine import EngineStats
from requestiq.analytics.models import QueryFilters
from requestiq.tests.conftest import T0, make_event


class TestSubmit:
    """Tests for detached writes."""

    @pytest.mark.asyncio
    async def test_submit_then_drain(self, engine):
        task = engine.submit(make_event())

        assert isinstance(task, asyncio.Task)
        assert await engine.drain() == 0
        assert engine.in_flight == 0
        assert engine.stats.events_written == 1
        assert (await engine.query_aggregate()).value.total_requests == 1

    @pytest.mark.asyncio
    async def test_failed_submit_does_not_raise(self, engine, backend):
        backend.inject_failure("execute")

        engine.submit(make_event())
        await engine.drain()

        assert engine.stats.write_failures == 1
        assert engine.stats.events_written == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, engine, backend):
        backend.inject_failure("execute", error=RuntimeError("boom"))

        task = engine.submit(make_event())
        await engine.drain()

        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self, engine):
        assert await engine.drain() == 0

    @pytest.mark.asyncio
    async def test_drain_timeout_reports_pending(self, engine, backend):
        backend.latency_s = 0.2

        engine.submit(make_event())
        pending = await engine.drain(timeout_s=0.01)

        assert pending == 1
        assert await engine.drain() == 0

    @pytest.mark.asyncio
    async def test_many_concurrent_submits(self, engine):
        for i in range(50):
            engine.submit(make_event(timestamp=T0 + i, path=f"/p{i % 5}"))
        await engine.drain()

        result = await engine.query_aggregate(QueryFilters(now=T0 + 1000))
        assert result.value.total_requests == 50
        assert sum(e.count for e in result.value.top_paths) == 50


class TestStats:
    """Tests for EngineStats."""

    def test_empty_averages(self):
        stats = EngineStats()

        assert stats.avg_write_latency_ms() == 0.0
        assert stats.avg_query_latency_ms() == 0.0

    def test_record_query(self):
        stats = EngineStats()
        stats.record_query(2_000_000, failed=False, complete=False)
        stats.record_query(4_000_000, failed=True)

        assert stats.queries == 2
        assert stats.partial_queries == 1
        assert stats.query_failures == 1
        assert stats.avg_query_latency_ms() == 3.0

    @pytest.mark.asyncio
    async def test_to_dict_after_traffic(self, engine):
        await engine.record_event(make_event())
        await engine.query_aggregate()
        await engine.sweep()

        data = engine.stats.to_dict()
        assert data["events_written"] == 1
        assert data["write_calls"] == 1
        assert data["queries"] == 1
        assert data["sweeps"] == 1
        assert data["keys_swept"] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
