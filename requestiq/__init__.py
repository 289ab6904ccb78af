"""
RequestIQ: Request Analytics on Redis

Samples HTTP requests, records latency/status/path analytics in
time-bucketed Redis structures (minute, hour, day) and answers aggregate
queries for a dashboard:
- Write path: one pipelined fan-out per event with sliding TTLs
- Query path: pipelined bucket reads under a deadline, folded into totals,
  error rate, percentiles, rankings and series
- Retention sweeper: resumable SCAN-based deletion of expired buckets
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from requestiq.core.types import Result, Ok, Err, ManualClock, system_clock
from requestiq.core.errors import (
    RequestIQError,
    WriteError,
    QueryError,
    StorageError,
    ConfigError,
)
from requestiq.core.config import RequestIQConfig, StorageConfig

from requestiq.analytics import (
    AggregateResult,
    AnalyticsEngine,
    AnalyticsEvent,
    Granularity,
    QueryFilters,
    RankedEntry,
    SeriesPoint,
    TimeWindow,
)
from requestiq.storage import InMemoryBackend, RedisStore
from requestiq.sampling import RequestSampler
from requestiq.app import RequestIQApp, create_app

__all__ = [
    "__version__",
    # Core
    "Result",
    "Ok",
    "Err",
    "ManualClock",
    "system_clock",
    "RequestIQError",
    "WriteError",
    "QueryError",
    "StorageError",
    "ConfigError",
    "RequestIQConfig",
    "StorageConfig",
    # Analytics
    "AggregateResult",
    "AnalyticsEngine",
    "AnalyticsEvent",
    "Granularity",
    "QueryFilters",
    "RankedEntry",
    "SeriesPoint",
    "TimeWindow",
    # Storage
    "InMemoryBackend",
    "RedisStore",
    # Wiring
    "RequestSampler",
    "RequestIQApp",
    "create_app",
]
