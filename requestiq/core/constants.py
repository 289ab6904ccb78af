"""
System-Wide Constants for RequestIQ

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS
HOUR_MS: Final[int] = 60 * MINUTE_MS
DAY_MS: Final[int] = 24 * HOUR_MS
DAY_SECONDS: Final[int] = 24 * 60 * 60

# =============================================================================
# EVENT IDENTIFIERS
# =============================================================================
IDENTIFIER_SPACE: Final[int] = 2**32
UNKNOWN_CLIENT: Final[str] = "unknown"

# =============================================================================
# STORAGE LAYOUT
# =============================================================================
DEFAULT_KEY_PREFIX: Final[str] = "requestiq"
DEFAULT_SLOW_THRESHOLD_MS: Final[int] = 1000
DEFAULT_RETENTION_DAYS: Final[int] = 7
DEFAULT_BATCH_SIZE: Final[int] = 100
ERROR_STATUS_MIN: Final[int] = 400

# =============================================================================
# TIMEOUTS
# =============================================================================
DEFAULT_WRITE_TIMEOUT_MS: Final[int] = 500
DEFAULT_QUERY_TIMEOUT_MS: Final[int] = 5 * SECOND_MS
DEFAULT_QUERY_WINDOW_MS: Final[int] = HOUR_MS

# =============================================================================
# QUERY SHAPING
# =============================================================================
DEFAULT_PERCENTILES: Final[tuple[int, ...]] = (50, 90, 95, 99)
DEFAULT_TOP_N: Final[int] = 10
DEFAULT_QUERY_PIPELINE_BUCKETS: Final[int] = 60
MAX_QUERY_BUCKETS: Final[int] = 50_000

# =============================================================================
# RETENTION SWEEPER
# =============================================================================
DEFAULT_SWEEP_BATCH_SIZE: Final[int] = 100
DEFAULT_SWEEP_INTERVAL_S: Final[int] = 3600
SCAN_COUNT_HINT: Final[int] = 1000

# =============================================================================
# SAMPLING & DASHBOARD
# =============================================================================
DEFAULT_SAMPLE_RATE: Final[float] = 0.1
DEFAULT_DASHBOARD_PATH: Final[str] = "/requestiq"
DEFAULT_EXCLUDE_PATHS: Final[tuple[str, ...]] = (
    "/favicon.ico",
    "/_next/*",
    "/api/auth/*",
)
