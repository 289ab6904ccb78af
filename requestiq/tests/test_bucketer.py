"""
Unit Tests: Bucketer

Tests:
    - Per-granularity bucket keys and truncation
    - Window enumeration at each granularity
    - Key parsing (inverse mapping)
"""

import pytest

from requestiq.analytics.bucketer import (
    bucket_at,
    bucket_from_key,
    buckets_for,
    buckets_in_range,
    count_buckets,
    truncate,
)
from requestiq.analytics.models import Granularity, TimeWindow
from requestiq.tests.conftest import DAY, HOUR, MINUTE, T0

SAMPLE_TIMESTAMPS = [
    0,
    1,
    T0,
    T0 + 59_999,
    1_709_164_800_000,  # 2024-02-29T00:00:00Z
    1_711_846_799_999,  # 2024-03-30T23:59:59.999Z
    4_102_444_800_000,  # 2100-01-01T00:00:00Z
]


class TestBucketsFor:
    """Tests for timestamp -> bucket mapping."""

    def test_keys_for_known_timestamp(self):
        buckets = buckets_for(T0)

        assert buckets.minute.key == "202401011230"
        assert buckets.hour.key == "2024010112"
        assert buckets.day.key == "20240101"

    def test_one_bucket_per_granularity(self):
        buckets = list(buckets_for(T0))

        assert [b.granularity for b in buckets] == [
            Granularity.MINUTE, Granularity.HOUR, Granularity.DAY,
        ]

    @pytest.mark.parametrize("ts", SAMPLE_TIMESTAMPS)
    def test_bucket_contains_timestamp(self, ts):
        for bucket in buckets_for(ts):
            assert bucket.timestamp <= ts
            assert ts <= bucket.end

    def test_truncation_values(self):
        assert truncate(T0, Granularity.MINUTE) == T0 - 15_000
        assert truncate(T0, Granularity.HOUR) == T0 - 30 * MINUTE - 15_000
        assert truncate(T0, Granularity.DAY) == 1_704_067_200_000

    def test_keys_are_utc_and_zero_padded(self):
        assert bucket_at(0, Granularity.MINUTE).key == "197001010000"
        assert bucket_at(1_709_164_800_000, Granularity.DAY).key == "20240229"


class TestBucketsInRange:
    """Tests for window enumeration."""

    def test_one_hour_of_minutes(self):
        window = TimeWindow(T0, T0 + HOUR)
        buckets = list(buckets_in_range(window, Granularity.MINUTE))

        assert len(buckets) in (60, 61)
        stamps = [b.timestamp for b in buckets]
        assert stamps == sorted(set(stamps))
        assert all(b - a == MINUTE for a, b in zip(stamps, stamps[1:]))

    def test_aligned_hour_excluding_end(self):
        start = truncate(T0, Granularity.HOUR)
        window = TimeWindow(start, start + HOUR - 1)

        assert len(list(buckets_in_range(window, Granularity.MINUTE))) == 60

    def test_aligned_hour_including_end(self):
        start = truncate(T0, Granularity.HOUR)
        window = TimeWindow(start, start + HOUR)

        assert len(list(buckets_in_range(window, Granularity.MINUTE))) == 61

    def test_first_bucket_starts_before_window(self):
        window = TimeWindow(T0, T0 + 2 * MINUTE)
        first = next(buckets_in_range(window, Granularity.MINUTE))

        assert first.key == "202401011230"
        assert first.timestamp < window.start

    def test_empty_when_end_before_start(self):
        window = TimeWindow(T0, T0 - 1)

        assert list(buckets_in_range(window, Granularity.MINUTE)) == []
        assert count_buckets(window, Granularity.MINUTE) == 0

    def test_single_instant(self):
        window = TimeWindow(T0, T0)

        assert [b.key for b in buckets_in_range(window, Granularity.HOUR)] == ["2024010112"]

    def test_days_across_month_end(self):
        start = 1_706_659_200_000  # 2024-01-31T00:00:00Z
        window = TimeWindow(start, start + 2 * DAY)
        keys = [b.key for b in buckets_in_range(window, Granularity.DAY)]

        assert keys == ["20240131", "20240201", "20240202"]

    @pytest.mark.parametrize("granularity", list(Granularity))
    def test_count_matches_enumeration(self, granularity):
        window = TimeWindow(T0 - 3 * DAY + 17, T0)

        assert count_buckets(window, granularity) == len(list(buckets_in_range(window, granularity)))


class TestBucketFromKey:
    """Tests for key parsing."""

    @pytest.mark.parametrize("granularity", list(Granularity))
    def test_inverse_of_bucket_at(self, granularity):
        bucket = bucket_at(T0, granularity)

        assert bucket_from_key(granularity, bucket.key) == bucket

    @pytest.mark.parametrize("key", ["", "2024", "20240101123", "2024010112300", "20241301", "abcdefgh"])
    def test_rejects_malformed_day_keys(self, key):
        with pytest.raises(ValueError):
            bucket_from_key(Granularity.DAY, key)

    def test_rejects_wrong_length_for_granularity(self):
        with pytest.raises(ValueError):
            bucket_from_key(Granularity.MINUTE, "2024010112")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
