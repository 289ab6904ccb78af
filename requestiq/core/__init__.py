"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for RequestIQ:
- Result monad for zero-exception control flow on storage paths
- Error hierarchy with write/query/storage/config variants
- Configuration management with fail-fast validation
"""

from requestiq.core.types import (
    Result,
    Ok,
    Err,
    Clock,
    ManualClock,
    system_clock,
)
from requestiq.core.errors import (
    ErrorCode,
    RequestIQError,
    WriteError,
    QueryError,
    StorageError,
    ConfigError,
)
from requestiq.core.config import (
    RedisConfig,
    StorageConfig,
    SamplingConfig,
    DashboardConfig,
    ObservabilityConfig,
    RequestIQConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Clock",
    "ManualClock",
    "system_clock",
    "ErrorCode",
    "RequestIQError",
    "WriteError",
    "QueryError",
    "StorageError",
    "ConfigError",
    "RedisConfig",
    "StorageConfig",
    "SamplingConfig",
    "DashboardConfig",
    "ObservabilityConfig",
    "RequestIQConfig",
]
