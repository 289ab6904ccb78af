"""
Event Encoder

Derives the 32-bit event identifier used as a bitmap offset and as the
member name in `durations`/`timeseries`.

    identifier = abs(h("{timestamp}:{path}:{ip or 'unknown'}")) % 2**32

where h is the polynomial hash h = h*31 + unit over UTF-16 code units,
wrapped to a signed 32-bit integer after every step. The result is stable
across processes and hosts.

Distinct events can share an identifier; `total`/`slow`/`errors` then
under-count. The exact identity strategy avoids that at a memory cost.
"""

from __future__ import annotations

from requestiq.analytics.models import AnalyticsEvent
from requestiq.core import constants as C

_MASK32 = 0xFFFFFFFF
_SIGN32 = 0x80000000


def _to_signed32(value: int) -> int:
    value &= _MASK32
    return value - (1 << 32) if value & _SIGN32 else value


def string_hash32(text: str) -> int:
    """Signed 32-bit polynomial hash over UTF-16 code units."""
    data = text.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = _to_signed32((h << 5) - h + unit)
    return h


def identity_source(event: AnalyticsEvent) -> str:
    return f"{event.timestamp}:{event.path}:{event.ip or C.UNKNOWN_CLIENT}"


def identifier_for(event: AnalyticsEvent) -> int:
    """Deterministic identifier in [0, 2**32)."""
    return abs(string_hash32(identity_source(event))) % C.IDENTIFIER_SPACE
