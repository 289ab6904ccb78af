"""
Storage Protocol Definitions

Structural subtyping protocols (PEP 544) for the Redis command subset the
analytics engine relies on. `redis.asyncio.Redis` satisfies them directly;
`InMemoryBackend` implements them for development and tests.

Design Principles:
    - Pipelines queue commands synchronously and flush with one awaited
      `execute()`, mirroring redis-py
    - Only single-key atomic commands plus multi-key PFCOUNT/DEL
    - No transactions: every pipeline is opened with transaction=False
"""

from __future__ import annotations

from typing import (
    Any,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)


@runtime_checkable
class AnalyticsPipeline(Protocol):
    """
    Queued command buffer.

    Command methods return the pipeline itself; replies come back from
    `execute()` in queue order.
    """

    async def __aenter__(self) -> AnalyticsPipeline: ...

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None: ...

    # bitmaps
    def setbit(self, name: str, offset: int, value: int) -> Any: ...

    def bitcount(self, key: str, start: Optional[int] = None, end: Optional[int] = None) -> Any: ...

    # sets
    def sadd(self, name: str, *values: Any) -> Any: ...

    def scard(self, name: str) -> Any: ...

    # sorted sets
    def zadd(self, name: str, mapping: Mapping[Any, float]) -> Any: ...

    def zincrby(self, name: str, amount: float, value: Any) -> Any: ...

    def zcard(self, name: str) -> Any: ...

    def zrange(self, name: str, start: int, end: int, withscores: bool = False) -> Any: ...

    def zrevrange(self, name: str, start: int, end: int, withscores: bool = False) -> Any: ...

    # hyperloglog
    def pfadd(self, name: str, *values: Any) -> Any: ...

    def pfcount(self, *sources: str) -> Any: ...

    # keyspace
    def expire(self, name: str, time: int) -> Any: ...

    def delete(self, *names: str) -> Any: ...

    async def execute(self) -> list[Any]: ...


@runtime_checkable
class AnalyticsBackend(Protocol):
    """Connection-level operations used outside pipelines."""

    def pipeline(self, transaction: bool = True) -> AnalyticsPipeline: ...

    async def scan(
        self,
        cursor: int = 0,
        match: Optional[str] = None,
        count: Optional[int] = None,
    ) -> tuple[int, list[str]]: ...

    async def delete(self, *names: str) -> int: ...

    async def pfcount(self, *sources: str) -> int: ...

    async def ping(self) -> bool: ...

    async def aclose(self) -> None: ...
