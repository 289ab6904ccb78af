"""
Error Hierarchy for RequestIQ

Design Principles:
- Storage-facing operations return Result types instead of raising
- Every error carries a code, a message and structured context
- Configuration errors are the exception: they are raised at construction

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause for root cause analysis
- Timestamp for correlation with request logs

Usage:
    result = await engine.record_event(event)
    match result:
        case Ok(_):
            pass
        case Err(WriteError() as error):
            logger.warning("analytics write failed", **error.log_fields())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from requestiq.core.types import system_clock


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Write path errors
    - 2xxx: Query path errors
    - 3xxx: Storage/sweeper errors
    - 9xxx: Configuration errors
    """

    # Write errors (1xxx)
    WRITE_STORE_UNAVAILABLE = 1001
    WRITE_TIMEOUT = 1002
    WRITE_BATCH_FAILED = 1003
    WRITE_ENCODING_FAILED = 1004

    # Query errors (2xxx)
    QUERY_STORE_UNAVAILABLE = 2001
    QUERY_TIMEOUT = 2002
    QUERY_MALFORMED_RESULT = 2003
    QUERY_INVALID_FILTER = 2004

    # Storage errors (3xxx)
    STORAGE_CONNECTION_FAILED = 3001
    STORAGE_SCAN_FAILED = 3002
    STORAGE_DELETE_FAILED = 3003

    # Configuration errors (9xxx)
    CONFIG_INVALID_VALUE = 9001
    CONFIG_MISSING_VALUE = 9002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class RequestIQError(Exception):
    """
    Base class for all RequestIQ errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp (epoch ms)
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp_ms: int = field(default_factory=system_clock)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error to dictionary for logging/API responses.

        The cause is reduced to its string form to avoid leaking
        implementation details.
        """
        data: dict[str, Any] = {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "context": self.context,
        }
        if self.cause is not None:
            data["cause"] = repr(self.cause)
        return data

    def log_fields(self) -> dict[str, Any]:
        """Keyword fields for StructuredLogger; the message travels as error_message."""
        fields = self.to_dict()
        fields["error_message"] = fields.pop("message")
        return fields

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# WRITE ERRORS
# =============================================================================
@dataclass
class WriteError(RequestIQError):
    """
    Errors from the analytics write path.

    None of these are retried by the engine; the caller decides.
    """

    @classmethod
    def store_unavailable(
        cls,
        operation: str,
        cause: Optional[BaseException] = None,
    ) -> WriteError:
        """Redis unreachable or rejected the pipeline."""
        return cls(
            code=ErrorCode.WRITE_STORE_UNAVAILABLE,
            message=f"Store unavailable during '{operation}': {cause}",
            cause=cause,
            context={"operation": operation},
        )

    @classmethod
    def timeout(
        cls,
        operation: str,
        timeout_ms: int,
        cause: Optional[BaseException] = None,
    ) -> WriteError:
        """Pipeline did not complete within the write timeout."""
        return cls(
            code=ErrorCode.WRITE_TIMEOUT,
            message=f"Write '{operation}' timed out after {timeout_ms}ms",
            cause=cause,
            context={"operation": operation, "timeout_ms": timeout_ms},
        )

    @classmethod
    def batch_failed(
        cls,
        chunk_index: int,
        applied: int,
        total: int,
        cause: RequestIQError,
    ) -> WriteError:
        """
        A chunk of a batched write failed; later chunks were not attempted.

        `applied` is the number of events from the head of the input that
        were written, so the caller can retry `events[applied:]`.
        """
        return cls(
            code=ErrorCode.WRITE_BATCH_FAILED,
            message=(
                f"Batch chunk {chunk_index} failed after {applied}/{total} "
                f"events were written: {cause.message}"
            ),
            cause=cause,
            context={
                "chunk_index": chunk_index,
                "applied": applied,
                "total": total,
                "remaining": total - applied,
            },
        )

    @classmethod
    def encoding_failed(
        cls,
        field_name: str,
        value: Any,
        reason: str,
    ) -> WriteError:
        """Event could not be encoded into bucket mutations."""
        return cls(
            code=ErrorCode.WRITE_ENCODING_FAILED,
            message=f"Cannot encode field '{field_name}': {reason}",
            context={"field": field_name, "value": str(value)[:100], "reason": reason},
        )

    @property
    def applied(self) -> int:
        """Events written before a batch failure (0 for single writes)."""
        return int(self.context.get("applied", 0))


# =============================================================================
# QUERY ERRORS
# =============================================================================
@dataclass
class QueryError(RequestIQError):
    """
    Errors from the read path.

    The dashboard degrades these into an "data unavailable" aggregate
    instead of rendering fabricated zeros.
    """

    @classmethod
    def store_unavailable(
        cls,
        operation: str,
        cause: Optional[BaseException] = None,
    ) -> QueryError:
        return cls(
            code=ErrorCode.QUERY_STORE_UNAVAILABLE,
            message=f"Store unavailable during '{operation}': {cause}",
            cause=cause,
            context={"operation": operation},
        )

    @classmethod
    def timeout(
        cls,
        operation: str,
        timeout_ms: int,
    ) -> QueryError:
        """Deadline expired before the read could produce a result."""
        return cls(
            code=ErrorCode.QUERY_TIMEOUT,
            message=f"Query '{operation}' timed out after {timeout_ms}ms",
            context={"operation": operation, "timeout_ms": timeout_ms},
        )

    @classmethod
    def malformed_result(
        cls,
        key: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> QueryError:
        """Store returned a reply that cannot be interpreted."""
        return cls(
            code=ErrorCode.QUERY_MALFORMED_RESULT,
            message=f"Malformed reply for '{key}': {reason}",
            cause=cause,
            context={"key": key, "reason": reason},
        )

    @classmethod
    def invalid_filter(
        cls,
        filter_field: str,
        filter_value: Any,
        reason: str,
    ) -> QueryError:
        return cls(
            code=ErrorCode.QUERY_INVALID_FILTER,
            message=f"Invalid filter on '{filter_field}': {reason}",
            context={
                "filter_field": filter_field,
                "filter_value": str(filter_value)[:100],
                "reason": reason,
            },
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass
class StorageError(RequestIQError):
    """Errors from backend connection management and the retention sweeper."""

    @classmethod
    def connection_failed(
        cls,
        target: str,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Failed to connect to {target}: {cause}",
            cause=cause,
            context={"target": target},
        )

    @classmethod
    def scan_failed(
        cls,
        pattern: str,
        cursor: int,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_SCAN_FAILED,
            message=f"SCAN {pattern} failed at cursor {cursor}: {cause}",
            cause=cause,
            context={"pattern": pattern, "cursor": cursor},
        )

    @classmethod
    def delete_failed(
        cls,
        key_count: int,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_DELETE_FAILED,
            message=f"Failed to delete {key_count} keys: {cause}",
            cause=cause,
            context={"key_count": key_count},
        )


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================
@dataclass
class ConfigError(RequestIQError):
    """
    Invalid configuration.

    Raised from config constructors so a misconfigured engine never starts.
    """

    @classmethod
    def invalid_value(
        cls,
        setting: str,
        value: Any,
        reason: str,
    ) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{setting}': {reason} (got {value!r})",
            context={"setting": setting, "value": str(value)[:100], "reason": reason},
        )

    @classmethod
    def missing_value(cls, setting: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_MISSING_VALUE,
            message=f"Missing required setting '{setting}'",
            context={"setting": setting},
        )
