"""
Approximate Identity Sets

Storage strategy for the `total`, `slow` and `errors` fields. Both
strategies are idempotent: re-adding an identifier never changes the count.

| Strategy | Commands        | Memory                  | Count                 |
|----------|-----------------|-------------------------|-----------------------|
| bitmap   | SETBIT/BITCOUNT | up to 512MB per key     | under-counts on hash  |
|          |                 | (offset range 2**32)    | collisions            |
| exact    | SADD/SCARD      | ~1 entry per identifier | exact per identifier  |

Both only stage commands on a pipeline; replies come back from
`pipeline.execute()` as integers.
"""

from __future__ import annotations

from typing import Protocol

from requestiq.storage.protocols import AnalyticsPipeline


class ApproximateIdentitySet(Protocol):
    name: str

    def stage_add(self, pipe: AnalyticsPipeline, key: str, identifier: int) -> None: ...

    def stage_count(self, pipe: AnalyticsPipeline, key: str) -> None: ...


class BitmapIdentitySet:
    """One bit per identifier; identifiers that collide share a bit."""

    __slots__ = ()
    name = "bitmap"

    def stage_add(self, pipe: AnalyticsPipeline, key: str, identifier: int) -> None:
        pipe.setbit(key, identifier, 1)

    def stage_count(self, pipe: AnalyticsPipeline, key: str) -> None:
        pipe.bitcount(key)


class ExactIdentitySet:
    """Set of identifier strings."""

    __slots__ = ()
    name = "exact"

    def stage_add(self, pipe: AnalyticsPipeline, key: str, identifier: int) -> None:
        pipe.sadd(key, str(identifier))

    def stage_count(self, pipe: AnalyticsPipeline, key: str) -> None:
        pipe.scard(key)


_STRATEGIES: dict[str, type] = {
    BitmapIdentitySet.name: BitmapIdentitySet,
    ExactIdentitySet.name: ExactIdentitySet,
}


def identity_set_for(strategy: str) -> ApproximateIdentitySet:
    """
    Raises:
        ValueError: unknown strategy name.
    """
    try:
        return _STRATEGIES[strategy]()
    except KeyError:
        raise ValueError(f"unknown identity strategy: {strategy!r}") from None
