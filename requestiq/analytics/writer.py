"""
Write Path: Event Fan-Out

Each event touches its minute, hour and day bucket. Per bucket:

| Field       | Command                         | Condition               |
|-------------|---------------------------------|-------------------------|
| total       | identity add                    | always                  |
| slow        | identity add                    | duration >= threshold   |
| errors      | identity add                    | status >= 400           |
| durations   | ZADD {id: duration}             | always                  |
| paths       | ZINCRBY 1 path                  | always                  |
| methods     | ZINCRBY 1 method                | always                  |
| countries   | ZINCRBY 1 country               | country present         |
| timeseries  | ZADD {"ts:id": ts}              | always                  |
| unique_ips  | PFADD ip                        | ip present              |

followed by EXPIRE on every touched key (sliding TTL). All of it goes out
in one non-transactional pipeline. Redis applies each command atomically,
so concurrent writers never need a lock; a reader may observe a bucket
mid-write.

Counters (paths/methods/countries) are additive and double-count replays;
identity sets, durations and timeseries are keyed by identifier and do not.
"""

from __future__ import annotations

import asyncio
from typing import Sequence

from redis.exceptions import RedisError

from requestiq.analytics.bucketer import buckets_for
from requestiq.analytics.encoder import identifier_for
from requestiq.analytics.identity import ApproximateIdentitySet, identity_set_for
from requestiq.analytics.keyspace import Field, Keyspace
from requestiq.analytics.models import AnalyticsEvent
from requestiq.core.config import StorageConfig
from requestiq.core.errors import WriteError
from requestiq.core.types import Err, Ok, Result
from requestiq.observability.logging import StructuredLogger
from requestiq.storage.protocols import AnalyticsBackend, AnalyticsPipeline

logger = StructuredLogger("requestiq.analytics.writer")


class AnalyticsWriter:
    """
    Pipelined bucket writer.

    No retries: a failed write is reported once and the caller decides.
    """

    __slots__ = ("_backend", "_config", "_keys", "_identity")

    def __init__(self, backend: AnalyticsBackend, config: StorageConfig) -> None:
        self._backend = backend
        self._config = config
        self._keys = Keyspace(config.key_prefix)
        self._identity: ApproximateIdentitySet = identity_set_for(config.identity_strategy)

    @property
    def keyspace(self) -> Keyspace:
        return self._keys

    def stage_event(self, pipe: AnalyticsPipeline, event: AnalyticsEvent) -> int:
        """
        Queue every mutation for `event` on `pipe`.

        Returns:
            Number of commands staged.
        """
        identifier = identifier_for(event)
        member = str(identifier)
        ttl = self._config.retention_seconds
        staged = 0

        for bucket in buckets_for(event.timestamp):
            touched: list[str] = []

            def key(field: Field) -> str:
                k = self._keys.key(bucket, field)
                touched.append(k)
                return k

            self._identity.stage_add(pipe, key(Field.TOTAL), identifier)
            if event.is_slow(self._config.slow_threshold_ms):
                self._identity.stage_add(pipe, key(Field.SLOW), identifier)
            if event.is_error:
                self._identity.stage_add(pipe, key(Field.ERRORS), identifier)

            pipe.zadd(key(Field.DURATIONS), {member: event.duration})
            pipe.zincrby(key(Field.PATHS), 1, event.path)
            pipe.zincrby(key(Field.METHODS), 1, event.method)
            if event.country:
                pipe.zincrby(key(Field.COUNTRIES), 1, event.country)
            pipe.zadd(key(Field.TIMESERIES), {f"{event.timestamp}:{member}": event.timestamp})
            if event.ip:
                pipe.pfadd(key(Field.UNIQUE_IPS), event.ip)

            for k in touched:
                pipe.expire(k, ttl)
            staged += 2 * len(touched)

        return staged

    async def _flush(self, events: Sequence[AnalyticsEvent], operation: str) -> Result[None, WriteError]:
        timeout_ms = self._config.write_timeout_ms
        try:
            async with self._backend.pipeline(transaction=False) as pipe:
                for event in events:
                    self.stage_event(pipe, event)
                await asyncio.wait_for(pipe.execute(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            return Err(WriteError.timeout(operation, timeout_ms, e))
        except (RedisError, OSError) as e:
            return Err(WriteError.store_unavailable(operation, e))
        return Ok(None)

    async def record_event(self, event: AnalyticsEvent) -> Result[None, WriteError]:
        """Write one event to its three buckets."""
        match event.validate():
            case Err() as invalid:
                return invalid

        result = await self._flush([event], "record_event")
        if result.is_err():
            logger.warning(
                "analytics write failed",
                path=event.path,
                **result.error.log_fields(),
            )
        return result

    async def record_events_batch(
        self,
        events: Sequence[AnalyticsEvent],
    ) -> Result[int, WriteError]:
        """
        Write events in chunks of `batch_size`, one pipeline per chunk.

        The first failing chunk stops the batch. The error's `applied` is the
        length of the input prefix that was written; retry `events[applied:]`.
        An invalid event ends the batch at its index, after the valid events
        ahead of it in its chunk are written.

        Returns:
            Ok(number of events written) or Err(WriteError.batch_failed).
        """
        total = len(events)
        size = self._config.batch_size
        applied = 0

        for chunk_index, offset in enumerate(range(0, total, size)):
            chunk = events[offset:offset + size]

            invalid = None
            for i, event in enumerate(chunk):
                check = event.validate()
                if check.is_err():
                    invalid = check.error
                    chunk = chunk[:i]
                    break

            if chunk:
                result = await self._flush(chunk, "record_events_batch")
                if result.is_err():
                    return self._batch_failed(chunk_index, applied, total, result.error)
                applied += len(chunk)

            if invalid is not None:
                return self._batch_failed(chunk_index, applied, total, invalid)

            # let other tasks run between chunks
            await asyncio.sleep(0)

        return Ok(applied)

    @staticmethod
    def _batch_failed(
        chunk_index: int,
        applied: int,
        total: int,
        cause: WriteError,
    ) -> Err[WriteError]:
        error = WriteError.batch_failed(chunk_index, applied, total, cause)
        logger.warning("analytics batch write aborted", **error.log_fields())
        return Err(error)
