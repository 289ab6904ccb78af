"""
Storage module: Redis connection management and backends.

- AnalyticsBackend / AnalyticsPipeline: command-subset protocols
- RedisStore: shared redis.asyncio connection pool
- InMemoryBackend: single-process backend for development and tests
"""

from requestiq.storage.protocols import AnalyticsBackend, AnalyticsPipeline
from requestiq.storage.redis_store import ConnectionMetrics, RedisStore
from requestiq.storage.memory import InMemoryBackend, InMemoryPipeline

__all__ = [
    "AnalyticsBackend",
    "AnalyticsPipeline",
    "RedisStore",
    "ConnectionMetrics",
    "InMemoryBackend",
    "InMemoryPipeline",
]
