"""Utility modules for logging, timing and retries."""
from .retry import with_retry, RETRYABLE_EXCEPTIONS
from .logging_config import (
    LogSettings,
    setup_logging,
    timed,
    timed_section,
    timed_section_sync,
    perf_logger,
    PerfStats,
    global_stats,
)

__all__ = [
    "LogSettings",
    "with_retry",
    "RETRYABLE_EXCEPTIONS",
    "setup_logging",
    "timed",
    "timed_section",
    "timed_section_sync",
    "perf_logger",
    "PerfStats",
    "global_stats",
]
