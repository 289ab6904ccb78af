"""
Analytics Data Model

Value types flowing through the write and query paths:
- AnalyticsEvent: one sampled request
- Granularity / TimeWindow: how time is sliced and selected
- QueryFilters: query parameters
- RankedEntry / SeriesPoint / AggregateResult: query outputs
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from requestiq.core import constants as C
from requestiq.core.errors import WriteError
from requestiq.core.types import Err, Ok, Result


# =============================================================================
# GRANULARITY
# =============================================================================
class Granularity(Enum):
    """Calendar unit a bucket is aligned to (always UTC)."""
    MINUTE = "minute"  # %Y%m%d%H%M
    HOUR = "hour"      # %Y%m%d%H
    DAY = "day"        # %Y%m%d

    @property
    def format_string(self) -> str:
        """strftime format of the bucket key."""
        return {
            Granularity.MINUTE: "%Y%m%d%H%M",
            Granularity.HOUR: "%Y%m%d%H",
            Granularity.DAY: "%Y%m%d",
        }[self]

    @property
    def unit_ms(self) -> int:
        return {
            Granularity.MINUTE: C.MINUTE_MS,
            Granularity.HOUR: C.HOUR_MS,
            Granularity.DAY: C.DAY_MS,
        }[self]

    @property
    def key_length(self) -> int:
        """Digits in a bucket key."""
        return {
            Granularity.MINUTE: 12,
            Granularity.HOUR: 10,
            Granularity.DAY: 8,
        }[self]

    @classmethod
    def parse(cls, value: str) -> Granularity:
        """
        Raises:
            ValueError: unknown granularity name.
        """
        return cls(value.strip().lower())


# =============================================================================
# EVENTS
# =============================================================================
@dataclass(frozen=True, slots=True)
class AnalyticsEvent:
    """
    One sampled HTTP request.

    `user_agent` is carried for callers but not persisted.
    """

    timestamp: int
    path: str
    method: str
    status_code: int
    duration: float
    ip: Optional[str] = None
    country: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= C.ERROR_STATUS_MIN

    def is_slow(self, threshold_ms: int) -> bool:
        return self.duration >= threshold_ms

    def validate(self) -> Result[None, WriteError]:
        """Check the fields the write path encodes."""
        if not isinstance(self.timestamp, int) or self.timestamp < 0:
            return Err(WriteError.encoding_failed(
                "timestamp", self.timestamp, "must be a non-negative integer (epoch ms)"
            ))
        if not self.path:
            return Err(WriteError.encoding_failed("path", self.path, "must be non-empty"))
        if not self.method:
            return Err(WriteError.encoding_failed("method", self.method, "must be non-empty"))
        if not math.isfinite(self.duration) or self.duration < 0:
            return Err(WriteError.encoding_failed(
                "duration", self.duration, "must be a finite number >= 0"
            ))
        return Ok(None)


# =============================================================================
# TIME WINDOWS & FILTERS
# =============================================================================
@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Inclusive [start, end] in epoch ms. end < start selects nothing."""

    start: int
    end: int

    @property
    def is_empty(self) -> bool:
        return self.end < self.start

    @property
    def span_ms(self) -> int:
        return max(self.end - self.start, 0)

    def contains(self, timestamp: int) -> bool:
        return self.start <= timestamp <= self.end

    @classmethod
    def ending_at(cls, now_ms: int, span_ms: int = C.DEFAULT_QUERY_WINDOW_MS) -> TimeWindow:
        return cls(start=now_ms - span_ms, end=now_ms)

    @classmethod
    def last_hours(cls, hours: float, now_ms: int) -> TimeWindow:
        return cls.ending_at(now_ms, int(hours * C.HOUR_MS))


@dataclass(frozen=True, slots=True)
class QueryFilters:
    """
    Aggregate query parameters.

    Attributes:
        time_window: Window to read; defaults to the last hour ending at `now`.
        granularity: Bucket size to read at.
        now: Reference time for the default window (defaults to the clock).
        timeout_ms: Per-call deadline override.
        percentiles: Percentiles to report, each in [0, 100].
        top_n: Ranking length override.
    """

    time_window: Optional[TimeWindow] = None
    granularity: Granularity = Granularity.MINUTE
    now: Optional[int] = None
    timeout_ms: Optional[int] = None
    percentiles: tuple[float, ...] = C.DEFAULT_PERCENTILES
    top_n: Optional[int] = None

    def resolve_window(self, now_ms: int) -> TimeWindow:
        if self.time_window is not None:
            return self.time_window
        return TimeWindow.ending_at(self.now if self.now is not None else now_ms)


# =============================================================================
# QUERY OUTPUTS
# =============================================================================
@dataclass(frozen=True, slots=True)
class RankedEntry:
    label: str
    count: int


@dataclass(frozen=True, slots=True)
class SeriesPoint:
    timestamp: int
    value: float


def percentile_label(p: float) -> str:
    """50 -> "p50", 99.9 -> "p99.9"."""
    return f"p{int(p)}" if float(p).is_integer() else f"p{p}"


@dataclass(frozen=True, slots=True)
class AggregateResult:
    """
    Re-aggregated view over a window.

    `available=False` is the "data unavailable" marker returned to the
    dashboard when the store could not be read; every number is then zero
    and `error` holds the reason.
    """

    total_requests: int = 0
    slow_requests: int = 0
    error_requests: int = 0
    error_rate: float = 0.0
    percentiles: dict[str, float] = field(default_factory=dict)
    average_duration: float = 0.0
    duration_samples: int = 0
    unique_clients: int = 0
    top_paths: list[RankedEntry] = field(default_factory=list)
    top_countries: list[RankedEntry] = field(default_factory=list)
    top_methods: list[RankedEntry] = field(default_factory=list)
    time_series: list[SeriesPoint] = field(default_factory=list)
    buckets_scanned: int = 0
    buckets_expected: int = 0
    complete: bool = True
    available: bool = True
    error: Optional[str] = None

    @classmethod
    def unavailable(cls, error: Any = None) -> AggregateResult:
        return cls(
            complete=False,
            available=False,
            error=str(error) if error is not None else "data unavailable",
        )

    def to_dict(self) -> dict[str, Any]:
        """Dashboard JSON shape."""
        return {
            "totalRequests": self.total_requests,
            "slowRequests": self.slow_requests,
            "errorRequests": self.error_requests,
            "errorRate": self.error_rate,
            "percentiles": dict(self.percentiles),
            "averageDuration": self.average_duration,
            "durationSamples": self.duration_samples,
            "uniqueClients": self.unique_clients,
            "topPaths": [{"path": e.label, "count": e.count} for e in self.top_paths],
            "countryDistribution": [
                {"country": e.label, "count": e.count} for e in self.top_countries
            ],
            "methodDistribution": [
                {"method": e.label, "count": e.count} for e in self.top_methods
            ],
            "timeSeriesData": [
                {"timestamp": p.timestamp, "value": p.value} for p in self.time_series
            ],
            "bucketsScanned": self.buckets_scanned,
            "bucketsExpected": self.buckets_expected,
            "complete": self.complete,
            "available": self.available,
            "error": self.error,
        }
