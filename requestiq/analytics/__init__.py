"""
Analytics module: time-bucketed storage engine.

Components (leaf first):
- bucketer: timestamp -> minute/hour/day buckets
- encoder: 32-bit event identifiers
- identity: bitmap / exact identity-set strategies
- keyspace: {prefix}:{granularity}:{bucket_key}:{field}
- writer: pipelined fan-out of events with sliding TTLs
- reducer: fold over per-bucket partials, percentiles, rankings
- query: pipelined bucket reads under a deadline
- sweeper: resumable retention sweep
- engine: facade over all of the above
"""

from requestiq.analytics.models import (
    AggregateResult,
    AnalyticsEvent,
    Granularity,
    QueryFilters,
    RankedEntry,
    SeriesPoint,
    TimeWindow,
)
from requestiq.analytics.bucketer import (
    Bucket,
    BucketSet,
    bucket_from_key,
    buckets_for,
    buckets_in_range,
)
from requestiq.analytics.encoder import identifier_for, string_hash32
from requestiq.analytics.identity import (
    ApproximateIdentitySet,
    BitmapIdentitySet,
    ExactIdentitySet,
)
from requestiq.analytics.keyspace import Field, Keyspace
from requestiq.analytics.writer import AnalyticsWriter
from requestiq.analytics.reducer import BucketPartial, Reduction, fold_partials, percentile
from requestiq.analytics.query import AnalyticsQuery
from requestiq.analytics.sweeper import RetentionSweeper, SweepProgress
from requestiq.analytics.engine import AnalyticsEngine, EngineStats

__all__ = [
    "AggregateResult",
    "AnalyticsEvent",
    "Granularity",
    "QueryFilters",
    "RankedEntry",
    "SeriesPoint",
    "TimeWindow",
    "Bucket",
    "BucketSet",
    "bucket_from_key",
    "buckets_for",
    "buckets_in_range",
    "identifier_for",
    "string_hash32",
    "ApproximateIdentitySet",
    "BitmapIdentitySet",
    "ExactIdentitySet",
    "Field",
    "Keyspace",
    "AnalyticsWriter",
    "BucketPartial",
    "Reduction",
    "fold_partials",
    "percentile",
    "AnalyticsQuery",
    "RetentionSweeper",
    "SweepProgress",
    "AnalyticsEngine",
    "EngineStats",
]
