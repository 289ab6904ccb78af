"""
Reducer: Folding Bucket Partials

The query path reads one `BucketPartial` per bucket and folds them, in
bucket order, into a `Reduction` starting from `Reduction.zero()`:

    reduction = fold_partials(partials)

Folding is associative (`a.merge(b)`), so pipelined groups can be folded
separately and merged. Aggregate, ranking and series queries all use the
same fold.

Percentiles use the nearest-rank method over every duration sample:

    index = ceil(p / 100 * n) - 1, clamped to [0, n - 1]

e.g. samples [10, 20, 30, 40, 50]: p50 = 30, p100 = 50; no samples: 0.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np

from requestiq.analytics.models import (
    AggregateResult,
    RankedEntry,
    SeriesPoint,
    percentile_label,
)

SERIES_METRICS = ("timeseries", "requests", "errors", "slow", "duration", "unique_clients")


# =============================================================================
# PER-BUCKET PARTIAL
# =============================================================================
@dataclass(frozen=True, slots=True)
class BucketPartial:
    """Everything read from one bucket."""

    timestamp: int = 0
    total: int = 0
    slow: int = 0
    errors: int = 0
    duration_count: int = 0
    durations: tuple[float, ...] = ()
    paths: Mapping[str, int] = field(default_factory=dict)
    countries: Mapping[str, int] = field(default_factory=dict)
    methods: Mapping[str, int] = field(default_factory=dict)
    timeseries_count: int = 0
    unique_clients: int = 0

    @classmethod
    def zero(cls, timestamp: int = 0) -> BucketPartial:
        return cls(timestamp=timestamp)

    def metric(self, name: str) -> float:
        """
        Raises:
            ValueError: unknown metric.
        """
        match name:
            case "timeseries":
                return self.timeseries_count
            case "requests":
                return self.total
            case "errors":
                return self.errors
            case "slow":
                return self.slow
            case "duration":
                return self.duration_count
            case "unique_clients":
                return self.unique_clients
        raise ValueError(f"unknown series metric: {name!r}")


# =============================================================================
# ACCUMULATOR
# =============================================================================
@dataclass(slots=True)
class Reduction:
    """Fold accumulator."""

    buckets: int = 0
    total: int = 0
    slow: int = 0
    errors: int = 0
    duration_count: int = 0
    durations: list[float] = field(default_factory=list)
    paths: dict[str, int] = field(default_factory=dict)
    countries: dict[str, int] = field(default_factory=dict)
    methods: dict[str, int] = field(default_factory=dict)
    series: list[SeriesPoint] = field(default_factory=list)

    @classmethod
    def zero(cls) -> Reduction:
        return cls()

    def absorb(self, partial: BucketPartial, series_metric: str = "timeseries") -> Reduction:
        self.buckets += 1
        self.total += partial.total
        self.slow += partial.slow
        self.errors += partial.errors
        self.duration_count += partial.duration_count
        self.durations.extend(partial.durations)
        _add_counts(self.paths, partial.paths)
        _add_counts(self.countries, partial.countries)
        _add_counts(self.methods, partial.methods)
        self.series.append(SeriesPoint(partial.timestamp, partial.metric(series_metric)))
        return self

    def merge(self, other: Reduction) -> Reduction:
        """Combine two folds over consecutive bucket runs into a new one."""
        out = Reduction(
            buckets=self.buckets + other.buckets,
            total=self.total + other.total,
            slow=self.slow + other.slow,
            errors=self.errors + other.errors,
            duration_count=self.duration_count + other.duration_count,
            durations=[*self.durations, *other.durations],
            paths=dict(self.paths),
            countries=dict(self.countries),
            methods=dict(self.methods),
            series=[*self.series, *other.series],
        )
        _add_counts(out.paths, other.paths)
        _add_counts(out.countries, other.countries)
        _add_counts(out.methods, other.methods)
        return out

    @property
    def error_rate(self) -> float:
        return self.errors / self.total if self.total else 0.0

    @property
    def average_duration(self) -> float:
        """
        Mean over the stored duration samples, not over `total`.

        Each recorded event stores exactly one sample per bucket, so the two
        agree unless two events share an identifier or a duration member.
        """
        if not self.durations:
            return 0.0
        return float(np.mean(np.asarray(self.durations, dtype=np.float64)))

    def to_result(
        self,
        percentiles: Sequence[float],
        top_n: Optional[int],
        unique_clients: int,
        buckets_expected: int,
        complete: bool,
    ) -> AggregateResult:
        return AggregateResult(
            total_requests=self.total,
            slow_requests=self.slow,
            error_requests=self.errors,
            error_rate=self.error_rate,
            percentiles=compute_percentiles(self.durations, percentiles),
            average_duration=self.average_duration,
            duration_samples=len(self.durations),
            unique_clients=unique_clients,
            top_paths=rank(self.paths, top_n),
            top_countries=rank(self.countries, top_n),
            top_methods=rank(self.methods, top_n),
            time_series=list(self.series),
            buckets_scanned=self.buckets,
            buckets_expected=buckets_expected,
            complete=complete,
        )


def _add_counts(into: dict[str, int], counts: Mapping[str, int]) -> None:
    for label, count in counts.items():
        into[label] = into.get(label, 0) + count


# =============================================================================
# FOLD
# =============================================================================
def fold_partials(
    partials: Iterable[BucketPartial],
    series_metric: str = "timeseries",
    initial: Optional[Reduction] = None,
) -> Reduction:
    """Left fold from `initial` (default zero). Inputs are not mutated."""
    acc = Reduction.zero() if initial is None else initial.merge(Reduction.zero())
    for partial in partials:
        acc.absorb(partial, series_metric)
    return acc


# =============================================================================
# PERCENTILES & RANKINGS
# =============================================================================
def percentile_index(p: float, n: int) -> int:
    return min(max(math.ceil(p / 100 * n) - 1, 0), n - 1)


def percentile(samples: Sequence[float], p: float) -> float:
    """Nearest-rank percentile; 0 for no samples."""
    if not 0 <= p <= 100:
        raise ValueError(f"percentile must be in [0, 100], got {p}")
    n = len(samples)
    if n == 0:
        return 0.0
    ordered = np.sort(np.asarray(samples, dtype=np.float64))
    return float(ordered[percentile_index(p, n)])


def compute_percentiles(samples: Sequence[float], ps: Sequence[float]) -> dict[str, float]:
    """{"p50": ..., "p90": ...} with one sort for all percentiles."""
    for p in ps:
        if not 0 <= p <= 100:
            raise ValueError(f"percentile must be in [0, 100], got {p}")
    n = len(samples)
    if n == 0:
        return {percentile_label(p): 0.0 for p in ps}
    ordered = np.sort(np.asarray(samples, dtype=np.float64))
    return {percentile_label(p): float(ordered[percentile_index(p, n)]) for p in ps}


def rank(counts: Mapping[str, int], limit: Optional[int] = None) -> list[RankedEntry]:
    """Count descending, then label ascending."""
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    if limit is not None:
        ordered = ordered[:limit]
    return [RankedEntry(label, count) for label, count in ordered]
