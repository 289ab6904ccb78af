"""
Bucketer: Calendar-Aligned Time Buckets

Maps epoch-ms timestamps to minute/hour/day buckets and enumerates the
buckets covering a window. All arithmetic is UTC, so buckets tile the
timeline with no DST gaps or repeats.

Nothing here reads the current time; callers pass it in.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

from requestiq.analytics.models import Granularity, TimeWindow


@dataclass(frozen=True, slots=True)
class Bucket:
    """
    One calendar slice.

    `timestamp` is the slice start in epoch ms; `key` is its zero-padded
    UTC calendar string.
    """

    granularity: Granularity
    key: str
    timestamp: int

    @property
    def end(self) -> int:
        """Last millisecond inside the bucket."""
        return self.timestamp + self.granularity.unit_ms - 1


@dataclass(frozen=True, slots=True)
class BucketSet:
    """The three buckets one timestamp falls into."""

    minute: Bucket
    hour: Bucket
    day: Bucket

    def __iter__(self) -> Iterator[Bucket]:
        yield self.minute
        yield self.hour
        yield self.day


def truncate(timestamp_ms: int, granularity: Granularity) -> int:
    """Start of the bucket containing `timestamp_ms`."""
    # every unit divides a UTC day and the epoch starts on a day boundary
    return timestamp_ms - timestamp_ms % granularity.unit_ms


def bucket_at(timestamp_ms: int, granularity: Granularity) -> Bucket:
    start = truncate(timestamp_ms, granularity)
    when = datetime.fromtimestamp(start / 1000, tz=timezone.utc)
    return Bucket(granularity, when.strftime(granularity.format_string), start)


def buckets_for(timestamp_ms: int) -> BucketSet:
    """Exactly one bucket per granularity; each starts at or before the timestamp."""
    return BucketSet(
        minute=bucket_at(timestamp_ms, Granularity.MINUTE),
        hour=bucket_at(timestamp_ms, Granularity.HOUR),
        day=bucket_at(timestamp_ms, Granularity.DAY),
    )


def buckets_in_range(window: TimeWindow, granularity: Granularity) -> Iterator[Bucket]:
    """
    Buckets whose start lies in [truncate(window.start), window.end].

    Strictly increasing; nothing when end < start. A one-hour window at
    minute granularity yields 60 buckets, or 61 when both ends sit on
    boundaries.
    """
    if window.is_empty:
        return
    step = granularity.unit_ms
    boundary = truncate(window.start, granularity)
    while boundary <= window.end:
        yield bucket_at(boundary, granularity)
        boundary += step


def count_buckets(window: TimeWindow, granularity: Granularity) -> int:
    """len(list(buckets_in_range(...))) without materialising them."""
    if window.is_empty:
        return 0
    first = truncate(window.start, granularity)
    return (window.end - first) // granularity.unit_ms + 1


def bucket_from_key(granularity: Granularity, bucket_key: str) -> Bucket:
    """
    Inverse of bucket_at for a stored key.

    Raises:
        ValueError: key is not a valid calendar string for the granularity.
    """
    if len(bucket_key) != granularity.key_length or not bucket_key.isdigit():
        raise ValueError(f"not a {granularity.value} bucket key: {bucket_key!r}")
    when = datetime.strptime(bucket_key, granularity.format_string).replace(tzinfo=timezone.utc)
    return Bucket(granularity, bucket_key, int(when.timestamp()) * 1000)
