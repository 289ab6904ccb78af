"""
Retention Sweeper

Deletes buckets older than the retention horizon:

    expired  <=>  bucket start < now_ms - retention_days * 86_400_000

Keys carry a sliding TTL, so Redis expires most of them on its own; the
sweeper removes what the TTL misses (keys touched late by replays, keys
written under a longer retention setting).

The keyspace is walked with SCAN one page at a time, never KEYS. Keys that
do not parse as `{prefix}:{granularity}:{bucket_key}:{field}` are left
alone. A failed sweep keeps its cursor and the next `sweep()` resumes from
there.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from redis.exceptions import RedisError

from requestiq.analytics.keyspace import Keyspace
from requestiq.core import constants as C
from requestiq.core.config import StorageConfig
from requestiq.core.errors import StorageError
from requestiq.core.types import Clock, Err, Ok, Result, system_clock
from requestiq.observability.logging import StructuredLogger
from requestiq.storage.protocols import AnalyticsBackend

logger = StructuredLogger("requestiq.analytics.sweeper")


@dataclass(frozen=True, slots=True)
class SweepProgress:
    """Outcome of one SCAN page."""

    cursor: int
    scanned: int
    deleted: int
    done: bool


class RetentionSweeper:
    """
    Resumable SCAN + DEL over the engine's namespace.

    Usage:
        sweeper = RetentionSweeper(backend, config)
        match await sweeper.sweep(now_ms):
            case Ok(deleted): ...
            case Err(error): ...   # next sweep() resumes at sweeper.cursor
    """

    __slots__ = ("_backend", "_config", "_keys", "_scan_count", "_cursor")

    def __init__(
        self,
        backend: AnalyticsBackend,
        config: StorageConfig,
        scan_count: int = C.SCAN_COUNT_HINT,
    ) -> None:
        self._backend = backend
        self._config = config
        self._keys = Keyspace(config.key_prefix)
        self._scan_count = scan_count
        self._cursor = 0

    @property
    def cursor(self) -> int:
        """Where the next sweep resumes; 0 means from the start."""
        return self._cursor

    def horizon(self, now_ms: int) -> int:
        return now_ms - self._config.retention_ms

    def is_expired(self, key: str, now_ms: int) -> bool:
        parsed = self._keys.parse(key)
        if parsed is None:
            return False
        return parsed.bucket.timestamp < self.horizon(now_ms)

    async def sweep_step(
        self,
        now_ms: int,
        cursor: Optional[int] = None,
    ) -> Result[SweepProgress, StorageError]:
        """Process one SCAN page starting at `cursor` (default: the saved cursor)."""
        position = self._cursor if cursor is None else cursor
        pattern = self._keys.scan_pattern()

        try:
            next_cursor, keys = await self._backend.scan(
                cursor=position, match=pattern, count=self._scan_count
            )
        except (RedisError, OSError) as e:
            return Err(StorageError.scan_failed(pattern, position, e))

        expired = [k for k in keys if self.is_expired(k, now_ms)]
        deleted = 0
        batch = self._config.sweep_batch_size
        for offset in range(0, len(expired), batch):
            chunk = expired[offset:offset + batch]
            try:
                deleted += int(await self._backend.delete(*chunk))
            except (RedisError, OSError) as e:
                return Err(StorageError.delete_failed(len(chunk), e))

        next_cursor = int(next_cursor)
        self._cursor = next_cursor
        return Ok(SweepProgress(
            cursor=next_cursor,
            scanned=len(keys),
            deleted=deleted,
            done=next_cursor == 0,
        ))

    async def sweep(self, now_ms: int) -> Result[int, StorageError]:
        """
        Run to the end of the keyspace, resuming a previously failed sweep.

        Returns:
            Ok(keys deleted by this call) or the first error.
        """
        resumed_from = self._cursor
        deleted = 0
        scanned = 0
        while True:
            step = await self.sweep_step(now_ms)
            if step.is_err():
                logger.warning(
                    "retention sweep interrupted",
                    resume_cursor=self._cursor,
                    deleted=deleted,
                    **step.error.log_fields(),
                )
                return Err(step.error)
            progress = step.value
            deleted += progress.deleted
            scanned += progress.scanned
            if progress.done:
                break
            await asyncio.sleep(0)

        logger.info(
            "retention sweep complete",
            deleted=deleted,
            scanned=scanned,
            resumed_from=resumed_from,
            horizon_ms=self.horizon(now_ms),
        )
        return Ok(deleted)

    async def run_periodically(
        self,
        interval_s: Optional[float] = None,
        clock: Clock = system_clock,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Sweep every `interval_s` seconds until `stop_event` is set."""
        interval = interval_s if interval_s is not None else self._config.sweep_interval_s
        stop = stop_event or asyncio.Event()
        while not stop.is_set():
            await self.sweep(clock())
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
