"""
Keyspace: Redis key layout

    {prefix}:{granularity}:{bucket_key}:{field}

e.g. requestiq:minute:202401011230:paths
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from requestiq.analytics.bucketer import Bucket, bucket_from_key
from requestiq.analytics.models import Granularity


class Field(Enum):
    """Per-bucket record fields."""
    TOTAL = "total"            # identity set
    SLOW = "slow"              # identity set
    ERRORS = "errors"          # identity set
    DURATIONS = "durations"    # zset id -> duration
    PATHS = "paths"            # zset path -> count
    COUNTRIES = "countries"    # zset country -> count
    METHODS = "methods"        # zset method -> count
    TIMESERIES = "timeseries"  # zset "ts:id" -> ts
    UNIQUE_IPS = "unique_ips"  # hyperloglog


RANKING_FIELDS: dict[str, Field] = {
    "paths": Field.PATHS,
    "countries": Field.COUNTRIES,
    "methods": Field.METHODS,
}


@dataclass(frozen=True, slots=True)
class ParsedKey:
    bucket: Bucket
    field: Field


class Keyspace:
    """Builds and parses keys under one prefix."""

    __slots__ = ("prefix",)

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix

    def key(self, bucket: Bucket, field: Field) -> str:
        return f"{self.prefix}:{bucket.granularity.value}:{bucket.key}:{field.value}"

    def scan_pattern(self) -> str:
        return f"{self.prefix}:*"

    def parse(self, key: str) -> Optional[ParsedKey]:
        """None for anything this engine did not write."""
        parts = key.split(":")
        if len(parts) != 4 or parts[0] != self.prefix:
            return None
        _, granularity_name, bucket_key, field_name = parts
        try:
            granularity = Granularity(granularity_name)
            field = Field(field_name)
            bucket = bucket_from_key(granularity, bucket_key)
        except ValueError:
            return None
        return ParsedKey(bucket, field)
