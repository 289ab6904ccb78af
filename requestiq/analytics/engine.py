"""
Analytics Engine Facade

Composes writer, query path and sweeper over one backend and exposes the
engine's external operations. Also owns fire-and-forget submission for
request middleware:

    engine.submit(event)     # returns immediately, never raises
    ...
    await engine.drain()     # on shutdown
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from requestiq.analytics.models import (
    AggregateResult,
    AnalyticsEvent,
    Granularity,
    QueryFilters,
    RankedEntry,
    SeriesPoint,
    TimeWindow,
)
from requestiq.analytics.query import AnalyticsQuery
from requestiq.analytics.sweeper import RetentionSweeper
from requestiq.analytics.writer import AnalyticsWriter
from requestiq.core import constants as C
from requestiq.core.config import StorageConfig
from requestiq.core.errors import QueryError, StorageError, WriteError
from requestiq.core.types import Clock, Result, system_clock
from requestiq.observability.logging import StructuredLogger
from requestiq.storage.protocols import AnalyticsBackend

logger = StructuredLogger("requestiq.analytics.engine")


# =============================================================================
# ENGINE STATS
# =============================================================================
@dataclass(slots=True)
class EngineStats:
    """
    Process-local counters.

    Plain integer increments; all callers share one event loop.
    """

    events_written: int = 0
    write_calls: int = 0
    write_failures: int = 0
    write_latency_sum_ns: int = 0

    queries: int = 0
    query_failures: int = 0
    partial_queries: int = 0
    query_latency_sum_ns: int = 0

    sweeps: int = 0
    keys_swept: int = 0

    def record_write(self, latency_ns: int, written: int, failed: bool) -> None:
        self.write_calls += 1
        self.events_written += written
        self.write_latency_sum_ns += latency_ns
        if failed:
            self.write_failures += 1

    def record_query(self, latency_ns: int, failed: bool, complete: bool = True) -> None:
        self.queries += 1
        self.query_latency_sum_ns += latency_ns
        if failed:
            self.query_failures += 1
        elif not complete:
            self.partial_queries += 1

    def avg_write_latency_ms(self) -> float:
        if self.write_calls == 0:
            return 0.0
        return (self.write_latency_sum_ns / self.write_calls) / 1_000_000

    def avg_query_latency_ms(self) -> float:
        if self.queries == 0:
            return 0.0
        return (self.query_latency_sum_ns / self.queries) / 1_000_000

    def to_dict(self) -> dict[str, Any]:
        return {
            "events_written": self.events_written,
            "write_calls": self.write_calls,
            "write_failures": self.write_failures,
            "avg_write_latency_ms": round(self.avg_write_latency_ms(), 3),
            "queries": self.queries,
            "query_failures": self.query_failures,
            "partial_queries": self.partial_queries,
            "avg_query_latency_ms": round(self.avg_query_latency_ms(), 3),
            "sweeps": self.sweeps,
            "keys_swept": self.keys_swept,
        }


# =============================================================================
# ENGINE
# =============================================================================
class AnalyticsEngine:
    """
    Time-bucketed analytics storage engine.

    Example:
        engine = AnalyticsEngine(store.client, config.storage)
        await engine.record_event(event)
        result = await engine.query_aggregate(QueryFilters())
    """

    __slots__ = (
        "_backend",
        "_config",
        "_clock",
        "_writer",
        "_query",
        "_sweeper",
        "_pending",
        "_stats",
    )

    def __init__(
        self,
        backend: AnalyticsBackend,
        config: Optional[StorageConfig] = None,
        clock: Clock = system_clock,
    ) -> None:
        self._backend = backend
        self._config = config or StorageConfig()
        self._clock = clock
        self._writer = AnalyticsWriter(backend, self._config)
        self._query = AnalyticsQuery(backend, self._config, clock)
        self._sweeper = RetentionSweeper(backend, self._config)
        self._pending: set[asyncio.Task[None]] = set()
        self._stats = EngineStats()

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def stats(self) -> EngineStats:
        return self._stats

    @property
    def sweeper(self) -> RetentionSweeper:
        return self._sweeper

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    async def record_event(self, event: AnalyticsEvent) -> Result[None, WriteError]:
        start = time.perf_counter_ns()
        result = await self._writer.record_event(event)
        self._stats.record_write(
            time.perf_counter_ns() - start,
            written=1 if result.is_ok() else 0,
            failed=result.is_err(),
        )
        return result

    async def record_events_batch(
        self,
        events: Sequence[AnalyticsEvent],
    ) -> Result[int, WriteError]:
        start = time.perf_counter_ns()
        result = await self._writer.record_events_batch(events)
        written = result.value if result.is_ok() else result.error.applied
        self._stats.record_write(
            time.perf_counter_ns() - start, written=written, failed=result.is_err()
        )
        return result

    def submit(self, event: AnalyticsEvent) -> asyncio.Task[None]:
        """
        Schedule `record_event` and return at once.

        Failures are logged by the writer and counted in stats; nothing
        propagates to the caller.
        """
        task = asyncio.get_running_loop().create_task(self._record_detached(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _record_detached(self, event: AnalyticsEvent) -> None:
        try:
            await self.record_event(event)
        except Exception:
            logger.exception("unexpected error in detached analytics write", path=event.path)

    async def drain(self, timeout_s: Optional[float] = None) -> int:
        """
        Wait for submitted writes.

        Returns:
            Number of writes still pending when the timeout expired.
        """
        if not self._pending:
            return 0
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout_s)
        if pending:
            logger.warning("analytics writes still pending at drain", pending=len(pending))
        return len(pending)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------
    async def query_aggregate(
        self,
        filters: Optional[QueryFilters] = None,
    ) -> Result[AggregateResult, QueryError]:
        start = time.perf_counter_ns()
        result = await self._query.query_aggregate(filters)
        self._stats.record_query(
            time.perf_counter_ns() - start,
            failed=result.is_err(),
            complete=result.value.complete if result.is_ok() else True,
        )
        return result

    async def top_entries(
        self,
        kind: str,
        window: TimeWindow,
        limit: int = C.DEFAULT_TOP_N,
        granularity: Granularity = Granularity.MINUTE,
    ) -> Result[list[RankedEntry], QueryError]:
        start = time.perf_counter_ns()
        result = await self._query.top_entries(kind, window, limit, granularity)
        self._stats.record_query(time.perf_counter_ns() - start, failed=result.is_err())
        return result

    async def time_series(
        self,
        metric: str,
        window: TimeWindow,
        granularity: Granularity = Granularity.MINUTE,
    ) -> Result[list[SeriesPoint], QueryError]:
        start = time.perf_counter_ns()
        result = await self._query.time_series(metric, window, granularity)
        self._stats.record_query(time.perf_counter_ns() - start, failed=result.is_err())
        return result

    async def percentiles(
        self,
        window: TimeWindow,
        percentiles: Sequence[float] = C.DEFAULT_PERCENTILES,
        granularity: Granularity = Granularity.MINUTE,
    ) -> Result[dict[str, float], QueryError]:
        start = time.perf_counter_ns()
        result = await self._query.percentiles(window, percentiles, granularity)
        self._stats.record_query(time.perf_counter_ns() - start, failed=result.is_err())
        return result

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------
    async def sweep(self, now_ms: Optional[int] = None) -> Result[int, StorageError]:
        result = await self._sweeper.sweep(self._clock() if now_ms is None else now_ms)
        self._stats.sweeps += 1
        if result.is_ok():
            self._stats.keys_swept += result.value
        return result

    async def run_sweeper(self, stop_event: asyncio.Event) -> None:
        """Periodic sweep on the engine clock until `stop_event` is set."""
        await self._sweeper.run_periodically(
            self._config.sweep_interval_s, self._clock, stop_event
        )
