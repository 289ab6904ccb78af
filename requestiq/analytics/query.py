"""
Query Path: Bucket Reads Under a Deadline

1. Resolve the window (default: the last hour) and enumerate its buckets.
2. Read the buckets in pipelined groups of `query_pipeline_buckets`.
3. Fold the per-bucket partials (`reducer.fold_partials`).

Deadline handling: before each group the remaining budget is checked and
the group's round-trip is bounded by it. Once the budget runs out the
remaining groups are skipped and the result comes back with
`complete=False`. Only when not a single group could be read is the query
an `Err(QueryError.timeout)`. The single-view reads (`top_entries`, `time_series`,
`percentiles`) carry no completeness marker, so for them any cut-short scan
is an `Err(QueryError.timeout)`.

Unique clients over a window come from one PFCOUNT across every scanned
bucket's HyperLogLog (a union), not from summing per-bucket estimates.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from functools import partial
from typing import Any, Iterator, Optional, Sequence

from redis.exceptions import RedisError, ResponseError

from requestiq.analytics.bucketer import Bucket, buckets_in_range, count_buckets
from requestiq.analytics.identity import ApproximateIdentitySet, identity_set_for
from requestiq.analytics.keyspace import RANKING_FIELDS, Field, Keyspace
from requestiq.analytics.models import (
    AggregateResult,
    Granularity,
    QueryFilters,
    RankedEntry,
    SeriesPoint,
    TimeWindow,
)
from requestiq.analytics.reducer import (
    SERIES_METRICS,
    BucketPartial,
    compute_percentiles,
    fold_partials,
    rank,
)
from requestiq.core import constants as C
from requestiq.core.config import StorageConfig
from requestiq.core.errors import QueryError
from requestiq.core.types import Clock, Err, Ok, Result, system_clock
from requestiq.observability.logging import StructuredLogger
from requestiq.storage.protocols import AnalyticsBackend, AnalyticsPipeline

logger = StructuredLogger("requestiq.analytics.query")

# series metric name -> what has to be read per bucket
_SERIES_READS: dict[str, dict[str, bool]] = {
    "requests": {"identity": True},
    "errors": {"identity": True},
    "slow": {"identity": True},
    "duration": {"duration_count": True},
    "unique_clients": {"unique": True},
    "timeseries": {"timeseries": True},
}


@dataclass(frozen=True, slots=True)
class _ReadPlan:
    """Which fields to read from every bucket."""

    identity: bool = False
    duration_count: bool = False
    durations: bool = False
    rankings: tuple[Field, ...] = ()
    timeseries: bool = False
    unique: bool = False


_AGGREGATE_PLAN = _ReadPlan(
    identity=True,
    duration_count=True,
    durations=True,
    rankings=(Field.PATHS, Field.COUNTRIES, Field.METHODS),
    timeseries=True,
)


class _MalformedReply(Exception):
    def __init__(self, key: str, reason: str) -> None:
        super().__init__(reason)
        self.key = key
        self.reason = reason


@dataclass(slots=True)
class _Scan:
    partials: list[BucketPartial]
    buckets: list[Bucket]
    expected: int
    complete: bool
    remaining_s: float


class AnalyticsQuery:
    """
    Read side of the engine.

    Stateless apart from configuration; safe to share between tasks.
    """

    __slots__ = ("_backend", "_config", "_keys", "_identity", "_clock")

    def __init__(
        self,
        backend: AnalyticsBackend,
        config: StorageConfig,
        clock: Clock = system_clock,
    ) -> None:
        self._backend = backend
        self._config = config
        self._keys = Keyspace(config.key_prefix)
        self._identity: ApproximateIdentitySet = identity_set_for(config.identity_strategy)
        self._clock = clock

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================
    async def query_aggregate(
        self,
        filters: Optional[QueryFilters] = None,
    ) -> Result[AggregateResult, QueryError]:
        """Totals, error rate, percentiles, rankings and series over a window."""
        filters = filters or QueryFilters()
        invalid = self._check_filters(filters)
        if invalid is not None:
            return Err(invalid)

        window = filters.resolve_window(self._clock())
        timeout_ms = filters.timeout_ms or self._config.query_timeout_ms

        read = await self._scan(
            "query_aggregate", window, filters.granularity, _AGGREGATE_PLAN, timeout_ms
        )
        if read.is_err():
            return read
        scan = read.value

        reduction = fold_partials(scan.partials, series_metric="timeseries")
        unique = await self._unique_union(scan, timeout_ms)
        if unique.is_err():
            return unique
        unique_clients, complete = unique.value

        return Ok(reduction.to_result(
            percentiles=filters.percentiles,
            top_n=filters.top_n or self._config.top_n,
            unique_clients=unique_clients,
            buckets_expected=scan.expected,
            complete=complete,
        ))

    async def top_entries(
        self,
        kind: str,
        window: TimeWindow,
        limit: int = C.DEFAULT_TOP_N,
        granularity: Granularity = Granularity.MINUTE,
    ) -> Result[list[RankedEntry], QueryError]:
        """Top `limit` labels of `kind` ("paths", "countries", "methods")."""
        field = RANKING_FIELDS.get(kind)
        if field is None:
            return Err(QueryError.invalid_filter(
                "kind", kind, f"must be one of {', '.join(RANKING_FIELDS)}"
            ))
        if limit <= 0:
            return Err(QueryError.invalid_filter("limit", limit, "must be > 0"))

        scan = self._require_complete(
            "top_entries",
            await self._scan(
                "top_entries",
                window,
                granularity,
                _ReadPlan(rankings=(field,)),
                self._config.query_timeout_ms,
            ),
        )
        if scan.is_err():
            return scan

        reduction = fold_partials(scan.value.partials)
        counts = {
            Field.PATHS: reduction.paths,
            Field.COUNTRIES: reduction.countries,
            Field.METHODS: reduction.methods,
        }[field]
        return Ok(rank(counts, limit))

    async def time_series(
        self,
        metric: str,
        window: TimeWindow,
        granularity: Granularity = Granularity.MINUTE,
    ) -> Result[list[SeriesPoint], QueryError]:
        """
        One point per bucket in the window, oldest first.

        Metrics: requests, errors, slow, duration (samples), unique_clients,
        timeseries (raw entries). Empty buckets report 0.
        """
        reads = _SERIES_READS.get(metric)
        if reads is None:
            return Err(QueryError.invalid_filter(
                "metric", metric, f"must be one of {', '.join(SERIES_METRICS)}"
            ))

        scan = self._require_complete(
            "time_series",
            await self._scan(
                "time_series",
                window,
                granularity,
                _ReadPlan(**reads),
                self._config.query_timeout_ms,
            ),
        )
        if scan.is_err():
            return scan
        return Ok(fold_partials(scan.value.partials, series_metric=metric).series)

    async def percentiles(
        self,
        window: TimeWindow,
        percentiles: Sequence[float] = C.DEFAULT_PERCENTILES,
        granularity: Granularity = Granularity.MINUTE,
    ) -> Result[dict[str, float], QueryError]:
        """Nearest-rank duration percentiles, e.g. {"p50": 30.0, ...}."""
        for p in percentiles:
            if not 0 <= p <= 100:
                return Err(QueryError.invalid_filter("percentiles", p, "must be in [0, 100]"))

        scan = self._require_complete(
            "percentiles",
            await self._scan(
                "percentiles",
                window,
                granularity,
                _ReadPlan(durations=True, duration_count=True),
                self._config.query_timeout_ms,
            ),
        )
        if scan.is_err():
            return scan
        reduction = fold_partials(scan.value.partials)
        return Ok(compute_percentiles(reduction.durations, percentiles))

    # =========================================================================
    # VALIDATION
    # =========================================================================
    def _require_complete(
        self,
        operation: str,
        read: Result[_Scan, QueryError],
    ) -> Result[_Scan, QueryError]:
        if read.is_ok() and not read.value.complete:
            return Err(QueryError.timeout(operation, self._config.query_timeout_ms))
        return read

    @staticmethod
    def _check_filters(filters: QueryFilters) -> Optional[QueryError]:
        for p in filters.percentiles:
            if not 0 <= p <= 100:
                return QueryError.invalid_filter("percentiles", p, "must be in [0, 100]")
        if filters.top_n is not None and filters.top_n <= 0:
            return QueryError.invalid_filter("top_n", filters.top_n, "must be > 0")
        if filters.timeout_ms is not None and filters.timeout_ms <= 0:
            return QueryError.invalid_filter("timeout_ms", filters.timeout_ms, "must be > 0")
        return None

    # =========================================================================
    # BUCKET SCAN
    # =========================================================================
    async def _scan(
        self,
        operation: str,
        window: TimeWindow,
        granularity: Granularity,
        plan: _ReadPlan,
        timeout_ms: int,
    ) -> Result[_Scan, QueryError]:
        expected = count_buckets(window, granularity)
        if expected > C.MAX_QUERY_BUCKETS:
            return Err(QueryError.invalid_filter(
                "time_window",
                f"{window.start}..{window.end}",
                f"spans {expected} {granularity.value} buckets (max {C.MAX_QUERY_BUCKETS})",
            ))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        group_size = self._config.query_pipeline_buckets
        partials: list[BucketPartial] = []
        scanned: list[Bucket] = []
        complete = True

        for group in _grouped(buckets_in_range(window, granularity), group_size):
            remaining = deadline - loop.time()
            if remaining <= 0:
                complete = False
                break
            try:
                partials.extend(await self._read_group(group, plan, window, remaining))
                scanned.extend(group)
            except asyncio.TimeoutError:
                complete = False
                break
            except _MalformedReply as e:
                return Err(QueryError.malformed_result(e.key, e.reason))
            except ResponseError as e:
                return Err(QueryError.malformed_result(
                    self._keys.key(group[0], Field.TOTAL), str(e), e
                ))
            except (RedisError, OSError) as e:
                logger.warning("analytics query failed", operation=operation, error=str(e))
                return Err(QueryError.store_unavailable(operation, e))

        if not complete:
            logger.warning(
                "analytics query deadline reached",
                operation=operation,
                timeout_ms=timeout_ms,
                buckets_scanned=len(partials),
                buckets_expected=expected,
            )
            if not partials:
                return Err(QueryError.timeout(operation, timeout_ms))

        return Ok(_Scan(partials, scanned, expected, complete, deadline - loop.time()))

    async def _read_group(
        self,
        buckets: list[Bucket],
        plan: _ReadPlan,
        window: TimeWindow,
        timeout_s: float,
    ) -> list[BucketPartial]:
        async with self._backend.pipeline(transaction=False) as pipe:
            for bucket in buckets:
                self._stage(pipe, bucket, plan)
            replies = await asyncio.wait_for(pipe.execute(), timeout=timeout_s)
        it = iter(replies)
        return [self._parse(bucket, plan, window, it) for bucket in buckets]

    def _stage(self, pipe: AnalyticsPipeline, bucket: Bucket, plan: _ReadPlan) -> None:
        key = partial(self._keys.key, bucket)
        if plan.identity:
            for f in (Field.TOTAL, Field.SLOW, Field.ERRORS):
                self._identity.stage_count(pipe, key(f))
        if plan.duration_count:
            pipe.zcard(key(Field.DURATIONS))
        if plan.durations:
            pipe.zrange(key(Field.DURATIONS), 0, -1, withscores=True)
        depth = self._config.ranking_depth
        stop = -1 if depth is None else depth - 1
        for f in plan.rankings:
            pipe.zrevrange(key(f), 0, stop, withscores=True)
        if plan.timeseries:
            pipe.zrange(key(Field.TIMESERIES), 0, -1, withscores=True)
        if plan.unique:
            pipe.pfcount(key(Field.UNIQUE_IPS))

    def _parse(
        self,
        bucket: Bucket,
        plan: _ReadPlan,
        window: TimeWindow,
        replies: Iterator[Any],
    ) -> BucketPartial:
        key = partial(self._keys.key, bucket)
        fields: dict[str, Any] = {"timestamp": bucket.timestamp}

        if plan.identity:
            fields["total"] = _as_int(next(replies), key(Field.TOTAL))
            fields["slow"] = _as_int(next(replies), key(Field.SLOW))
            fields["errors"] = _as_int(next(replies), key(Field.ERRORS))
        if plan.duration_count:
            fields["duration_count"] = _as_int(next(replies), key(Field.DURATIONS))
        if plan.durations:
            fields["durations"] = tuple(
                score for _, score in _as_scored(next(replies), key(Field.DURATIONS))
            )
        rankings = {Field.PATHS: "paths", Field.COUNTRIES: "countries", Field.METHODS: "methods"}
        for f in plan.rankings:
            fields[rankings[f]] = {
                member: int(round(score))
                for member, score in _as_scored(next(replies), key(f))
            }
        if plan.timeseries:
            entries = _as_scored(next(replies), key(Field.TIMESERIES))
            fields["timeseries_count"] = sum(1 for _, ts in entries if window.contains(int(ts)))
        if plan.unique:
            fields["unique_clients"] = _as_int(next(replies), key(Field.UNIQUE_IPS))

        return BucketPartial(**fields)

    async def _unique_union(
        self,
        scan: _Scan,
        timeout_ms: int,
    ) -> Result[tuple[int, bool], QueryError]:
        """PFCOUNT over all scanned buckets; skipped once the deadline passed."""
        if not scan.partials:
            return Ok((0, scan.complete))
        if scan.remaining_s <= 0:
            return Ok((0, False))

        granularity_keys = [
            self._keys.key(bucket, Field.UNIQUE_IPS) for bucket in scan.buckets
        ]
        try:
            count = await asyncio.wait_for(
                self._backend.pfcount(*granularity_keys), timeout=scan.remaining_s
            )
        except asyncio.TimeoutError:
            logger.warning("unique client count skipped at deadline", timeout_ms=timeout_ms)
            return Ok((0, False))
        except ResponseError as e:
            return Err(QueryError.malformed_result(granularity_keys[0], str(e), e))
        except (RedisError, OSError) as e:
            return Err(QueryError.store_unavailable("query_aggregate", e))
        try:
            return Ok((_as_int(count, granularity_keys[0]), scan.complete))
        except _MalformedReply as e:
            return Err(QueryError.malformed_result(e.key, e.reason))


# =============================================================================
# REPLY COERCION
# =============================================================================
def _grouped(buckets: Iterator[Bucket], size: int) -> Iterator[list[Bucket]]:
    group: list[Bucket] = []
    for bucket in buckets:
        group.append(bucket)
        if len(group) == size:
            yield group
            group = []
    if group:
        yield group


def _as_int(reply: Any, key: str) -> int:
    if isinstance(reply, bool) or reply is None:
        raise _MalformedReply(key, f"expected integer, got {reply!r}")
    try:
        return int(reply)
    except (TypeError, ValueError):
        raise _MalformedReply(key, f"expected integer, got {reply!r}") from None


def _as_scored(reply: Any, key: str) -> list[tuple[str, float]]:
    if not isinstance(reply, (list, tuple)):
        raise _MalformedReply(key, f"expected scored members, got {type(reply).__name__}")
    out = []
    for item in reply:
        try:
            member, score = item
            score = float(score)
        except (TypeError, ValueError):
            raise _MalformedReply(key, f"bad scored member {item!r}") from None
        if isinstance(member, bytes):
            member = member.decode("utf-8", "replace")
        out.append((str(member), score))
    return out
