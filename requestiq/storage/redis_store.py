"""
Redis Connection Management
===========================

Owns the shared `redis.asyncio.Redis` connection pool used by every request
handler. The pool itself is the analytics backend: the engine calls
pipelines, SCAN, DEL and PFCOUNT on it directly.

Lifecycle:
    store = RedisStore(config.redis)
    match await store.connect():
        case Ok(_):
            engine = AnalyticsEngine(store.client, config.storage)
        case Err(error):
            ...
    await store.close()
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from requestiq.core.config import RedisConfig
from requestiq.core.errors import StorageError
from requestiq.core.types import Err, Ok, Result
from requestiq.observability.logging import StructuredLogger

logger = StructuredLogger("requestiq.storage.redis")


# =============================================================================
# CONNECTION METRICS
# =============================================================================
@dataclass(slots=True)
class ConnectionMetrics:
    """Counters for pool lifecycle events (single-threaded asyncio)."""

    connects: int = 0
    connection_errors: int = 0
    health_checks: int = 0
    last_ping_ns: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "connects": self.connects,
            "connection_errors": self.connection_errors,
            "health_checks": self.health_checks,
            "last_ping_ms": round(self.last_ping_ns / 1_000_000, 3),
        }


# =============================================================================
# REDIS STORE
# =============================================================================
class RedisStore:
    """
    Connection pool wrapper.

    Thread Safety:
        The pool is shared across tasks; redis-py hands out one connection
        per in-flight command or pipeline.
    """

    __slots__ = ("_config", "_client", "_metrics")

    def __init__(self, config: Optional[RedisConfig] = None) -> None:
        self._config = config or RedisConfig()
        self._client: Optional[aioredis.Redis] = None
        self._metrics = ConnectionMetrics()

    @property
    def client(self) -> aioredis.Redis:
        """
        The connected client.

        Raises:
            RuntimeError: if connect() has not succeeded.
        """
        if self._client is None:
            raise RuntimeError("RedisStore.client accessed before connect()")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def metrics(self) -> ConnectionMetrics:
        return self._metrics

    async def connect(self) -> Result[None, StorageError]:
        """
        Create the pool and verify it with PING.

        Returns:
            Ok(None) on success, Err(StorageError) when the server is
            unreachable. The pool is not kept on failure.
        """
        kwargs = self._config.get_connection_kwargs()
        if self._config.url is not None:
            client = aioredis.Redis.from_url(self._config.url, **kwargs)
        else:
            client = aioredis.Redis(**kwargs)

        start = time.perf_counter_ns()
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            self._metrics.connection_errors += 1
            await client.aclose()
            logger.error("redis connection failed", target=self._config.target, error=str(e))
            return Err(StorageError.connection_failed(self._config.target, e))

        self._metrics.last_ping_ns = time.perf_counter_ns() - start
        self._metrics.connects += 1
        self._client = client
        logger.info("redis connected", target=self._config.target)
        return Ok(None)

    async def close(self) -> None:
        """Release all pooled connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("redis connection closed", target=self._config.target)

    async def health_check(self) -> Result[dict[str, Any], StorageError]:
        """Server version, memory use and ping latency."""
        if self._client is None:
            return Err(StorageError.connection_failed(self._config.target))

        self._metrics.health_checks += 1
        try:
            start = time.perf_counter_ns()
            await self._client.ping()
            self._metrics.last_ping_ns = time.perf_counter_ns() - start
            server = await self._client.info(section="server")
            memory = await self._client.info(section="memory")
        except (RedisError, OSError) as e:
            self._metrics.connection_errors += 1
            return Err(StorageError.connection_failed(self._config.target, e))

        return Ok({
            "healthy": True,
            "target": self._config.target,
            "redis_version": server.get("redis_version", "unknown"),
            "used_memory_human": memory.get("used_memory_human", "unknown"),
            **self._metrics.to_dict(),
        })

    async def __aenter__(self) -> RedisStore:
        result = await self.connect()
        if result.is_err():
            raise result.error
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()
