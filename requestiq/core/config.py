"""
Configuration Management for RequestIQ

Provides validated configuration with sensible defaults.
Supports environment variable overrides (prefix REQUESTIQ_).

Design:
- Immutable after validation
- Fail-fast on invalid configuration (ConfigError at construction)
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from requestiq.core import constants as C
from requestiq.core.errors import ConfigError
from requestiq.core.types import Err, Ok, Result

IDENTITY_STRATEGIES = ("bitmap", "exact")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _require_positive(setting: str, value: float) -> None:
    if value <= 0:
        raise ConfigError.invalid_value(setting, value, "must be > 0")


# =============================================================================
# REDIS CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class RedisConfig:
    """
    Redis/Valkey connection configuration.

    Either `url` (redis:// or rediss://) or host/port is used; `url` wins
    when both are set.

    Attributes:
        url: Full connection URL, overrides host/port/db/password/ssl.
        host: Redis server hostname or IP address.
        port: Redis server port (1-65535).
        password: Optional authentication password.
        db: Logical database index (0-15).
        max_connections: Connection pool size shared by all request handlers.
        connect_timeout_ms: TCP connection timeout in milliseconds.
        socket_timeout_ms: Socket read/write timeout in milliseconds.
        ssl: Enable TLS encryption for connections.
    """

    url: Optional[str] = None
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    max_connections: int = 50
    connect_timeout_ms: int = 2000
    socket_timeout_ms: int = 5000
    ssl: bool = False

    def __post_init__(self) -> None:
        if not (1 <= self.port <= 65535):
            raise ConfigError.invalid_value("redis.port", self.port, "must be in [1, 65535]")
        if not (0 <= self.db <= 15):
            raise ConfigError.invalid_value("redis.db", self.db, "must be in [0, 15]")
        _require_positive("redis.max_connections", self.max_connections)
        _require_positive("redis.connect_timeout_ms", self.connect_timeout_ms)
        _require_positive("redis.socket_timeout_ms", self.socket_timeout_ms)
        if self.url is not None and not self.url.startswith(("redis://", "rediss://", "unix://")):
            raise ConfigError.invalid_value(
                "redis.url", self.url, "must start with redis://, rediss:// or unix://"
            )

    def get_connection_kwargs(self) -> dict[str, Any]:
        """
        Generate kwargs for redis-py connection.

        Responses are always decoded: the engine compares members as str.
        """
        kwargs: dict[str, Any] = {
            "max_connections": self.max_connections,
            "socket_connect_timeout": self.connect_timeout_ms / 1000.0,
            "socket_timeout": self.socket_timeout_ms / 1000.0,
            "decode_responses": True,
        }
        if self.url is None:
            kwargs.update(host=self.host, port=self.port, db=self.db, ssl=self.ssl)
            if self.password:
                kwargs["password"] = self.password
        return kwargs

    @property
    def target(self) -> str:
        """Human-readable connection target for logs (no credentials)."""
        if self.url is not None:
            return self.url.split("@")[-1]
        return f"{self.host}:{self.port}/{self.db}"


# =============================================================================
# STORAGE ENGINE CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Analytics storage engine configuration.

    Attributes:
        key_prefix: Namespace prefix for every Redis key the engine owns.
        slow_threshold_ms: Duration at or above which a request is "slow".
        retention_days: Sliding TTL applied on every write, and sweeper horizon.
        batch_size: Events per pipeline in record_events_batch.
        identity_strategy: "bitmap" (collision-prone, compact) or "exact" (set).
        write_timeout_ms: Upper bound on a single write pipeline.
        query_timeout_ms: Default deadline for a query.
        query_pipeline_buckets: Buckets read per pipeline round-trip.
        ranking_depth: Per-bucket ranking entries read by query_aggregate
            (None reads the full ranking).
        top_n: Entries kept in each ranking of an AggregateResult.
        sweep_batch_size: Keys per DEL issued by the sweeper.
        sweep_interval_s: Period of the background sweep loop.
    """

    key_prefix: str = C.DEFAULT_KEY_PREFIX
    slow_threshold_ms: int = C.DEFAULT_SLOW_THRESHOLD_MS
    retention_days: int = C.DEFAULT_RETENTION_DAYS
    batch_size: int = C.DEFAULT_BATCH_SIZE
    identity_strategy: str = "bitmap"
    write_timeout_ms: int = C.DEFAULT_WRITE_TIMEOUT_MS
    query_timeout_ms: int = C.DEFAULT_QUERY_TIMEOUT_MS
    query_pipeline_buckets: int = C.DEFAULT_QUERY_PIPELINE_BUCKETS
    ranking_depth: Optional[int] = None
    top_n: int = C.DEFAULT_TOP_N
    sweep_batch_size: int = C.DEFAULT_SWEEP_BATCH_SIZE
    sweep_interval_s: int = C.DEFAULT_SWEEP_INTERVAL_S

    def __post_init__(self) -> None:
        if not self.key_prefix or ":" in self.key_prefix or "*" in self.key_prefix:
            raise ConfigError.invalid_value(
                "storage.key_prefix", self.key_prefix, "must be non-empty without ':' or '*'"
            )
        if self.slow_threshold_ms < 0:
            raise ConfigError.invalid_value(
                "storage.slow_threshold_ms", self.slow_threshold_ms, "must be >= 0"
            )
        _require_positive("storage.retention_days", self.retention_days)
        _require_positive("storage.batch_size", self.batch_size)
        _require_positive("storage.write_timeout_ms", self.write_timeout_ms)
        _require_positive("storage.query_timeout_ms", self.query_timeout_ms)
        _require_positive("storage.query_pipeline_buckets", self.query_pipeline_buckets)
        _require_positive("storage.top_n", self.top_n)
        _require_positive("storage.sweep_batch_size", self.sweep_batch_size)
        _require_positive("storage.sweep_interval_s", self.sweep_interval_s)
        if self.ranking_depth is not None:
            _require_positive("storage.ranking_depth", self.ranking_depth)
        if self.identity_strategy not in IDENTITY_STRATEGIES:
            raise ConfigError.invalid_value(
                "storage.identity_strategy",
                self.identity_strategy,
                f"must be one of {', '.join(IDENTITY_STRATEGIES)}",
            )

    @property
    def retention_seconds(self) -> int:
        """TTL applied to every touched key."""
        return self.retention_days * C.DAY_SECONDS

    @property
    def retention_ms(self) -> int:
        return self.retention_days * C.DAY_MS


# =============================================================================
# SAMPLING CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class SamplingConfig:
    """Request sampling policy applied by the middleware."""

    rate: float = C.DEFAULT_SAMPLE_RATE
    slow_threshold_ms: int = C.DEFAULT_SLOW_THRESHOLD_MS
    exclude_paths: tuple[str, ...] = C.DEFAULT_EXCLUDE_PATHS

    def __post_init__(self) -> None:
        if not (0.0 <= self.rate <= 1.0):
            raise ConfigError.invalid_value("sampling.rate", self.rate, "must be in [0, 1]")
        if self.slow_threshold_ms < 0:
            raise ConfigError.invalid_value(
                "sampling.slow_threshold_ms", self.slow_threshold_ms, "must be >= 0"
            )


# =============================================================================
# DASHBOARD CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class DashboardConfig:
    """Dashboard mount point and basic-auth credentials."""

    enabled: bool = True
    path: str = C.DEFAULT_DASHBOARD_PATH
    enable_auth: bool = False
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.path.startswith("/"):
            raise ConfigError.invalid_value("dashboard.path", self.path, "must start with '/'")

    @property
    def auth_configured(self) -> bool:
        """Auth enabled with a username; anything else rejects every request."""
        return self.enable_auth and bool(self.username)


# =============================================================================
# OBSERVABILITY CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class ObservabilityConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_json: bool = True

    def __post_init__(self) -> None:
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError.invalid_value(
                "observability.log_level", self.log_level, f"must be one of {LOG_LEVELS}"
            )


# =============================================================================
# ROOT CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class RequestIQConfig:
    """Root configuration."""

    redis: RedisConfig = field(default_factory=RedisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls, prefix: str = "REQUESTIQ") -> Result[RequestIQConfig, ConfigError]:
        """
        Load configuration from environment variables.

        Example: REQUESTIQ_REDIS_URL, REQUESTIQ_STORAGE_RETENTION_DAYS,
        REQUESTIQ_SAMPLING_EXCLUDE_PATHS=/health,/static/*
        """
        env = _EnvReader(prefix)
        try:
            redis = RedisConfig(
                url=env.get("REDIS_URL") or None,
                host=env.get("REDIS_HOST", "localhost"),
                port=env.get_int("REDIS_PORT", 6379),
                password=env.get("REDIS_PASSWORD") or None,
                db=env.get_int("REDIS_DB", 0),
                max_connections=env.get_int("REDIS_MAX_CONNECTIONS", 50),
                connect_timeout_ms=env.get_int("REDIS_CONNECT_TIMEOUT_MS", 2000),
                socket_timeout_ms=env.get_int("REDIS_SOCKET_TIMEOUT_MS", 5000),
                ssl=env.get_bool("REDIS_SSL", False),
            )
            ranking_depth = env.get("STORAGE_RANKING_DEPTH")
            storage = StorageConfig(
                key_prefix=env.get("STORAGE_KEY_PREFIX", C.DEFAULT_KEY_PREFIX),
                slow_threshold_ms=env.get_int(
                    "STORAGE_SLOW_THRESHOLD_MS", C.DEFAULT_SLOW_THRESHOLD_MS
                ),
                retention_days=env.get_int("STORAGE_RETENTION_DAYS", C.DEFAULT_RETENTION_DAYS),
                batch_size=env.get_int("STORAGE_BATCH_SIZE", C.DEFAULT_BATCH_SIZE),
                identity_strategy=env.get("STORAGE_IDENTITY_STRATEGY", "bitmap").lower(),
                write_timeout_ms=env.get_int(
                    "STORAGE_WRITE_TIMEOUT_MS", C.DEFAULT_WRITE_TIMEOUT_MS
                ),
                query_timeout_ms=env.get_int(
                    "STORAGE_QUERY_TIMEOUT_MS", C.DEFAULT_QUERY_TIMEOUT_MS
                ),
                ranking_depth=int(ranking_depth) if ranking_depth else None,
                sweep_interval_s=env.get_int(
                    "STORAGE_SWEEP_INTERVAL_S", C.DEFAULT_SWEEP_INTERVAL_S
                ),
            )
            exclude = env.get_list("SAMPLING_EXCLUDE_PATHS")
            sampling = SamplingConfig(
                rate=env.get_float("SAMPLING_RATE", C.DEFAULT_SAMPLE_RATE),
                slow_threshold_ms=env.get_int(
                    "SAMPLING_SLOW_THRESHOLD_MS", C.DEFAULT_SLOW_THRESHOLD_MS
                ),
                exclude_paths=exclude if exclude is not None else C.DEFAULT_EXCLUDE_PATHS,
            )
            dashboard = DashboardConfig(
                enabled=env.get_bool("DASHBOARD_ENABLED", True),
                path=env.get("DASHBOARD_PATH", C.DEFAULT_DASHBOARD_PATH),
                enable_auth=env.get_bool("DASHBOARD_ENABLE_AUTH", False),
                username=env.get("DASHBOARD_USERNAME") or None,
                password=env.get("DASHBOARD_PASSWORD") or None,
            )
            observability = ObservabilityConfig(
                log_level=env.get("LOG_LEVEL", "INFO").upper(),
                log_json=env.get_bool("LOG_JSON", True),
            )
        except ConfigError as e:
            return Err(e)
        except ValueError as e:
            return Err(ConfigError.invalid_value(f"{prefix}_*", "", str(e)))

        return Ok(cls(
            redis=redis,
            storage=storage,
            sampling=sampling,
            dashboard=dashboard,
            observability=observability,
        ))

    def validate(self) -> Result[None, ConfigError]:
        """Cross-section consistency checks."""
        from requestiq.sampling import compile_path_pattern

        if self.dashboard.enabled:
            for pattern in self.sampling.exclude_paths:
                if compile_path_pattern(pattern).match(self.dashboard.path):
                    return Err(ConfigError.invalid_value(
                        "sampling.exclude_paths",
                        pattern,
                        f"excludes the dashboard path {self.dashboard.path}",
                    ))
        return Ok(None)


class _EnvReader:
    """Typed accessors over prefixed environment variables."""

    __slots__ = ("_prefix",)

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix

    def get(self, key: str, default: str = "") -> str:
        return os.environ.get(f"{self._prefix}_{key}", default)

    def get_list(self, key: str) -> Optional[tuple[str, ...]]:
        """Comma-separated values; None when unset, () when set but blank."""
        val = os.environ.get(f"{self._prefix}_{key}")
        if val is None:
            return None
        return tuple(p.strip() for p in val.split(",") if p.strip())

    def get_int(self, key: str, default: int) -> int:
        val = self.get(key)
        return int(val) if val else default

    def get_float(self, key: str, default: float) -> float:
        val = self.get(key)
        return float(val) if val else default

    def get_bool(self, key: str, default: bool) -> bool:
        val = self.get(key).lower()
        if val in ("true", "1", "yes"):
            return True
        if val in ("false", "0", "no"):
            return False
        return default
