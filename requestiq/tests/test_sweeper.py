"""
Unit Tests: Retention Sweeper

Tests:
    - Expired buckets deleted, recent and foreign keys kept
    - Page-by-page progress and cursor resume after failures
    - Periodic loop shutdown
"""

import asyncio

import pytest

from requestiq.analytics.sweeper import RetentionSweeper
from requestiq.core.config import StorageConfig
from requestiq.core.errors import ErrorCode
from requestiq.tests.conftest import DAY, T0, make_event

OLD = T0 - 8 * DAY


async def _seed(engine, backend):
    await engine.record_event(make_event(timestamp=OLD))
    await engine.record_event(make_event(timestamp=T0))
    async with backend.pipeline() as pipe:
        pipe.sadd("other:minute:202312240000:total", "1")
        pipe.sadd("requestiq:not-a-bucket", "1")
        pipe.sadd("requestiq:minute:2023122400:total", "1")
        await pipe.execute()


class TestExpiry:
    """Tests for the retention horizon."""

    def test_horizon(self):
        sweeper = RetentionSweeper(None, StorageConfig(retention_days=7))

        assert sweeper.horizon(T0) == T0 - 7 * DAY

    @pytest.mark.parametrize("key,expired", [
        ("requestiq:minute:202312240000:total", True),
        ("requestiq:day:20231225:paths", True),
        ("requestiq:day:20231226:paths", False),
        ("requestiq:minute:202401011230:total", False),
        ("requestiq:minute:2023122400:total", False),
        ("requestiq:week:202301:total", False),
        ("other:minute:202312240000:total", False),
    ])
    def test_is_expired(self, key, expired):
        sweeper = RetentionSweeper(None, StorageConfig())

        assert sweeper.is_expired(key, T0) is expired


class TestSweep:
    """Tests for full sweeps."""

    @pytest.mark.asyncio
    async def test_deletes_only_expired_buckets(self, engine, backend):
        await _seed(engine, backend)

        result = await engine.sweep(T0)

        assert result.is_ok()
        assert result.value == 21
        keys = await backend.keys()
        old_prefixes = ("requestiq:minute:202312241230", "requestiq:hour:2023122412", "requestiq:day:20231224")
        assert [k for k in keys if k.startswith(old_prefixes)] == []
        assert "requestiq:minute:202401011230:total" in keys
        assert "other:minute:202312240000:total" in keys
        assert "requestiq:not-a-bucket" in keys
        assert "requestiq:minute:2023122400:total" in keys
        assert engine.stats.keys_swept == 21

    @pytest.mark.asyncio
    async def test_second_sweep_finds_nothing(self, engine, backend):
        await _seed(engine, backend)
        await engine.sweep(T0)

        result = await engine.sweep(T0)

        assert result.value == 0

    @pytest.mark.asyncio
    async def test_defaults_to_engine_clock(self, engine, backend, clock):
        await engine.record_event(make_event())
        clock.advance(8 * DAY)

        # keys expired by TTL are gone before the sweeper sees them
        assert (await engine.sweep()).value == 0
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_pages_with_small_scan_count(self, engine, backend, storage_config):
        await _seed(engine, backend)
        sweeper = RetentionSweeper(backend, storage_config, scan_count=4)

        steps = []
        while True:
            step = await sweeper.sweep_step(T0)
            steps.append(step.value)
            if step.value.done:
                break

        assert len(steps) > 1
        assert sum(s.deleted for s in steps) == 21
        assert sweeper.cursor == 0

    @pytest.mark.asyncio
    async def test_resumes_after_scan_failure(self, engine, backend, storage_config):
        await _seed(engine, backend)
        sweeper = RetentionSweeper(backend, storage_config, scan_count=4)
        backend.inject_failure("scan", after=2)

        failed = await sweeper.sweep(T0)

        assert failed.is_err()
        assert failed.error.code == ErrorCode.STORAGE_SCAN_FAILED
        resume_at = sweeper.cursor
        assert resume_at > 0
        assert failed.error.context["cursor"] == resume_at

        resumed = await sweeper.sweep(T0)

        assert resumed.is_ok()
        assert sweeper.cursor == 0
        assert not [k for k in await backend.keys("requestiq:*") if sweeper.is_expired(k, T0)]

    @pytest.mark.asyncio
    async def test_delete_failure_keeps_cursor(self, engine, backend, storage_config):
        await _seed(engine, backend)
        sweeper = RetentionSweeper(backend, storage_config)
        backend.inject_failure("delete")

        result = await sweeper.sweep(T0)

        assert result.error.code == ErrorCode.STORAGE_DELETE_FAILED
        assert sweeper.cursor == 0
        assert (await sweeper.sweep(T0)).value == 21


class TestPeriodic:
    """Tests for the background loop."""

    @pytest.mark.asyncio
    async def test_stops_on_event(self, engine, backend, clock):
        await engine.record_event(make_event(timestamp=OLD))
        sweeper = RetentionSweeper(backend, StorageConfig())
        stop = asyncio.Event()

        task = asyncio.create_task(sweeper.run_periodically(0.01, clock, stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert task.done()
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_engine_sweeper_exits_when_already_stopped(self, engine, backend):
        await engine.record_event(make_event(timestamp=OLD))
        stop = asyncio.Event()
        stop.set()

        await asyncio.wait_for(engine.run_sweeper(stop), timeout=1)

        assert len(backend) == 21


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
