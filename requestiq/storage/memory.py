"""
In-Memory Analytics Backend

Single-process implementation of the Redis command subset in
`requestiq.storage.protocols`, for development, demos and tests.

Semantics follow Redis where the engine can observe them:
    - bitmaps, sets, sorted sets and HyperLogLogs are distinct key types;
      mixing them raises WRONGTYPE
    - sorted sets order by (score, member); zrevrange is the exact reverse
    - EXPIRE is lazy: keys past their deadline vanish on the next access
    - SCAN returns every key that exists for the whole iteration, whatever
      is deleted in between
    - pipelines queue synchronously and apply on `execute()` with no await
      between commands, so no other task interleaves

HyperLogLogs are exact sets here; PFCOUNT is therefore exact.

Failure injection (`inject_failure`) and artificial latency (`latency_s`)
let tests exercise the error and deadline paths.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Callable, Mapping, Optional

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from requestiq.core.types import Clock, system_clock

WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"


class _Bitmap(set):
    """Set bit offsets."""


class _HyperLogLog(set):
    """Exact stand-in for an HLL register set."""


@dataclass(slots=True)
class _FailurePlan:
    after: int
    times: int
    error: Exception


class InMemoryBackend:
    """
    Dictionary-backed analytics store.

    Example:
        clock = ManualClock(1_700_000_000_000)
        backend = InMemoryBackend(clock=clock)
        engine = AnalyticsEngine(backend, StorageConfig(), clock=clock)
    """

    __slots__ = (
        "_data",
        "_expires",
        "_slots",
        "_next_slot",
        "_clock",
        "_failures",
        "latency_s",
        "executed_pipelines",
    )

    def __init__(self, clock: Optional[Clock] = None, latency_s: float = 0.0) -> None:
        self._data: dict[str, Any] = {}
        self._expires: dict[str, int] = {}
        # creation order for SCAN cursors
        self._slots: dict[str, int] = {}
        self._next_slot = 1
        self._clock = clock or system_clock
        self._failures: dict[str, _FailurePlan] = {}
        self.latency_s = latency_s
        self.executed_pipelines = 0

    # -------------------------------------------------------------------------
    # Failure injection
    # -------------------------------------------------------------------------
    def inject_failure(
        self,
        op: str = "execute",
        after: int = 0,
        times: int = 1,
        error: Optional[Exception] = None,
    ) -> None:
        """
        Fail `op` ("execute", "scan", "delete", "pfcount") `times` times,
        after letting `after` calls succeed.
        """
        self._failures[op] = _FailurePlan(
            after=after,
            times=times,
            error=error or RedisConnectionError("injected failure"),
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def _maybe_fail(self, op: str) -> None:
        plan = self._failures.get(op)
        if plan is None:
            return
        if plan.after > 0:
            plan.after -= 1
            return
        plan.times -= 1
        if plan.times <= 0:
            del self._failures[op]
        raise plan.error

    # -------------------------------------------------------------------------
    # Keyspace internals
    # -------------------------------------------------------------------------
    def _purge_if_expired(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._remove(key)

    def _remove(self, key: str) -> bool:
        self._expires.pop(key, None)
        self._slots.pop(key, None)
        return self._data.pop(key, None) is not None

    def _get(self, key: str, kind: type) -> Any:
        self._purge_if_expired(key)
        value = self._data.get(key)
        if value is not None and type(value) is not kind:
            raise ResponseError(WRONGTYPE)
        return value

    def _get_or_create(self, key: str, kind: type) -> Any:
        value = self._get(key, kind)
        if value is None:
            value = kind()
            self._data[key] = value
            self._slots[key] = self._next_slot
            self._next_slot += 1
        return value

    # -------------------------------------------------------------------------
    # Commands (synchronous; pipelines and async wrappers call these)
    # -------------------------------------------------------------------------
    def _setbit(self, name: str, offset: int, value: int) -> int:
        if offset < 0 or offset >= 2**32:
            raise ResponseError("ERR bit offset is not an integer or out of range")
        bits = self._get_or_create(name, _Bitmap)
        old = 1 if offset in bits else 0
        if value:
            bits.add(offset)
        else:
            bits.discard(offset)
        return old

    def _bitcount(self, key: str, start: Optional[int] = None, end: Optional[int] = None) -> int:
        bits = self._get(key, _Bitmap)
        if not bits:
            return 0
        if start is None or end is None:
            return len(bits)
        nbytes = max(bits) // 8 + 1
        lo = start + nbytes if start < 0 else start
        hi = end + nbytes if end < 0 else end
        return sum(1 for b in bits if lo <= b // 8 <= hi)

    def _sadd(self, name: str, *values: Any) -> int:
        members = self._get_or_create(name, set)
        before = len(members)
        members.update(str(v) for v in values)
        return len(members) - before

    def _scard(self, name: str) -> int:
        members = self._get(name, set)
        return len(members) if members else 0

    def _zadd(self, name: str, mapping: Mapping[Any, float]) -> int:
        zset = self._get_or_create(name, dict)
        added = 0
        for member, score in mapping.items():
            member = str(member)
            if member not in zset:
                added += 1
            zset[member] = float(score)
        return added

    def _zincrby(self, name: str, amount: float, value: Any) -> float:
        zset = self._get_or_create(name, dict)
        member = str(value)
        zset[member] = zset.get(member, 0.0) + float(amount)
        return zset[member]

    def _zcard(self, name: str) -> int:
        zset = self._get(name, dict)
        return len(zset) if zset else 0

    def _zrange(
        self,
        name: str,
        start: int,
        end: int,
        withscores: bool = False,
        desc: bool = False,
    ) -> list[Any]:
        zset = self._get(name, dict)
        if not zset:
            return []
        ordered = sorted(zset.items(), key=lambda kv: (kv[1], kv[0]), reverse=desc)
        n = len(ordered)
        lo = max(start + n if start < 0 else start, 0)
        hi = min(end + n if end < 0 else end, n - 1)
        if lo > hi:
            return []
        window = ordered[lo:hi + 1]
        if withscores:
            return [(member, score) for member, score in window]
        return [member for member, _ in window]

    def _zrevrange(self, name: str, start: int, end: int, withscores: bool = False) -> list[Any]:
        return self._zrange(name, start, end, withscores=withscores, desc=True)

    def _zscore(self, name: str, value: Any) -> Optional[float]:
        zset = self._get(name, dict)
        if not zset:
            return None
        return zset.get(str(value))

    def _pfadd(self, name: str, *values: Any) -> int:
        existed = self._get(name, _HyperLogLog) is not None
        registers = self._get_or_create(name, _HyperLogLog)
        before = len(registers)
        registers.update(str(v) for v in values)
        return 1 if (len(registers) != before or not existed) else 0

    def _pfcount(self, *sources: str) -> int:
        union: set[str] = set()
        for key in sources:
            registers = self._get(key, _HyperLogLog)
            if registers:
                union |= registers
        return len(union)

    def _expire(self, name: str, time: int) -> bool:
        self._purge_if_expired(name)
        if name not in self._data:
            return False
        if time <= 0:
            self._remove(name)
        else:
            self._expires[name] = self._clock() + int(time) * 1000
        return True

    def _delete(self, *names: str) -> int:
        removed = 0
        for key in names:
            self._purge_if_expired(key)
            if self._remove(key):
                removed += 1
        return removed

    # -------------------------------------------------------------------------
    # Connection-level API
    # -------------------------------------------------------------------------
    def pipeline(self, transaction: bool = True) -> InMemoryPipeline:
        return InMemoryPipeline(self)

    async def scan(
        self,
        cursor: int = 0,
        match: Optional[str] = None,
        count: Optional[int] = None,
    ) -> tuple[int, list[str]]:
        """
        One SCAN page.

        The cursor is a creation slot number: keys created before the
        cursor was issued and still alive are returned exactly once.
        """
        self._maybe_fail("scan")
        await asyncio.sleep(0)
        page_size = count or 10
        candidates = sorted(
            (slot, key) for key, slot in self._slots.items() if slot >= max(cursor, 1)
        )
        page = candidates[:page_size]
        keys = []
        for _, key in page:
            self._purge_if_expired(key)
            if key in self._data and (match is None or fnmatchcase(key, match)):
                keys.append(key)
        if len(candidates) <= page_size:
            return 0, keys
        return page[-1][0] + 1, keys

    async def delete(self, *names: str) -> int:
        self._maybe_fail("delete")
        return self._delete(*names)

    async def pfcount(self, *sources: str) -> int:
        self._maybe_fail("pfcount")
        return self._pfcount(*sources)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    # -------------------------------------------------------------------------
    # Inspection helpers
    # -------------------------------------------------------------------------
    async def keys(self, pattern: str = "*") -> list[str]:
        for key in list(self._data):
            self._purge_if_expired(key)
        return sorted(k for k in self._data if fnmatchcase(k, pattern))

    async def exists(self, *names: str) -> int:
        total = 0
        for key in names:
            self._purge_if_expired(key)
            total += key in self._data
        return total

    async def ttl(self, name: str) -> int:
        """Seconds to expiry; -2 when missing, -1 when persistent."""
        self._purge_if_expired(name)
        if name not in self._data:
            return -2
        deadline = self._expires.get(name)
        if deadline is None:
            return -1
        return -(-(deadline - self._clock()) // 1000)

    async def zscore(self, name: str, value: Any) -> Optional[float]:
        return self._zscore(name, value)

    async def bitcount(self, key: str) -> int:
        return self._bitcount(key)

    async def flushall(self) -> None:
        self._data.clear()
        self._expires.clear()
        self._slots.clear()

    def __len__(self) -> int:
        return len(self._data)


class InMemoryPipeline:
    """Command queue flushed against an InMemoryBackend."""

    __slots__ = ("_backend", "_queue")

    def __init__(self, backend: InMemoryBackend) -> None:
        self._backend = backend
        self._queue: list[tuple[Callable[..., Any], tuple[Any, ...], dict[str, Any]]] = []

    async def __aenter__(self) -> InMemoryPipeline:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self._queue.clear()

    def __len__(self) -> int:
        return len(self._queue)

    def _stage(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> InMemoryPipeline:
        self._queue.append((fn, args, kwargs))
        return self

    def setbit(self, name: str, offset: int, value: int) -> InMemoryPipeline:
        return self._stage(self._backend._setbit, name, offset, value)

    def bitcount(
        self, key: str, start: Optional[int] = None, end: Optional[int] = None
    ) -> InMemoryPipeline:
        return self._stage(self._backend._bitcount, key, start, end)

    def sadd(self, name: str, *values: Any) -> InMemoryPipeline:
        return self._stage(self._backend._sadd, name, *values)

    def scard(self, name: str) -> InMemoryPipeline:
        return self._stage(self._backend._scard, name)

    def zadd(self, name: str, mapping: Mapping[Any, float]) -> InMemoryPipeline:
        return self._stage(self._backend._zadd, name, dict(mapping))

    def zincrby(self, name: str, amount: float, value: Any) -> InMemoryPipeline:
        return self._stage(self._backend._zincrby, name, amount, value)

    def zcard(self, name: str) -> InMemoryPipeline:
        return self._stage(self._backend._zcard, name)

    def zrange(
        self, name: str, start: int, end: int, withscores: bool = False
    ) -> InMemoryPipeline:
        return self._stage(self._backend._zrange, name, start, end, withscores=withscores)

    def zrevrange(
        self, name: str, start: int, end: int, withscores: bool = False
    ) -> InMemoryPipeline:
        return self._stage(self._backend._zrevrange, name, start, end, withscores=withscores)

    def pfadd(self, name: str, *values: Any) -> InMemoryPipeline:
        return self._stage(self._backend._pfadd, name, *values)

    def pfcount(self, *sources: str) -> InMemoryPipeline:
        return self._stage(self._backend._pfcount, *sources)

    def expire(self, name: str, time: int) -> InMemoryPipeline:
        return self._stage(self._backend._expire, name, time)

    def delete(self, *names: str) -> InMemoryPipeline:
        return self._stage(self._backend._delete, *names)

    async def execute(self) -> list[Any]:
        """
        Apply every queued command in order.

        Like redis-py with raise_on_error, the first command error is raised
        after the whole queue has been applied.
        """
        backend = self._backend
        backend._maybe_fail("execute")
        if backend.latency_s:
            await asyncio.sleep(backend.latency_s)

        replies: list[Any] = []
        first_error: Optional[Exception] = None
        for fn, args, kwargs in self._queue:
            try:
                replies.append(fn(*args, **kwargs))
            except ResponseError as e:
                replies.append(e)
                if first_error is None:
                    first_error = e
        self._queue.clear()
        backend.executed_pipelines += 1
        if first_error is not None:
            raise first_error
        return replies
