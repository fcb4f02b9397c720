"""Logging configuration for netintent.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing of pool operations, engine entry points and device patches
- Structured context (pool, target, element id)

Environment Variables:
    NETINTENT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    NETINTENT_LOG_FILE: Path to log file (default: ~/.netintent/netintent.log)
    NETINTENT_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    NETINTENT_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from netintent.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at platform start

    @timed("synchronize")
    async def synchronize(self, intent):
        ...

    # Or use context manager for sections:
    with timed_section_sync("save_pools", context="pools.json"):
        ...
"""
import asyncio
import functools
import logging
import os
import threading
import time
from contextlib import contextmanager, asynccontextmanager
from dataclasses import dataclass, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("netintent.perf")
main_logger = logging.getLogger("netintent")

MAIN_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-30s | %(levelname)-7s | %(message)s"
PERF_FORMAT = "%(asctime)s.%(msecs)03d | PERF | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
PERF_LOG_NAME = "netintent-perf.log"

# Marks handlers installed by setup_logging so a second call replaces them
_HANDLER_FLAG = "_netintent_handler"


@dataclass
class LogSettings:
    """Logging settings, read from NETINTENT_LOG_* variables."""
    level: int = logging.INFO
    log_file: Path = Path.home() / ".netintent" / "netintent.log"
    max_size_mb: int = 10
    backups: int = 5

    @property
    def perf_log_file(self) -> Path:
        return self.log_file.parent / PERF_LOG_NAME

    @classmethod
    def from_env(cls) -> "LogSettings":
        level_name = os.environ.get("NETINTENT_LOG_LEVEL", "INFO").upper()
        settings = cls(level=getattr(logging, level_name, logging.INFO))
        if os.environ.get("NETINTENT_LOG_FILE"):
            settings.log_file = Path(os.environ["NETINTENT_LOG_FILE"])
        settings.max_size_mb = int(os.environ.get("NETINTENT_LOG_MAX_SIZE", settings.max_size_mb))
        settings.backups = int(os.environ.get("NETINTENT_LOG_BACKUPS", settings.backups))
        return settings


def _install(logger: logging.Logger, handler: logging.Handler, level: int, fmt: str) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    setattr(handler, _HANDLER_FLAG, True)
    logger.addHandler(handler)


def _remove_installed(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()


def _rotating(path: Path, settings: LogSettings) -> RotatingFileHandler:
    return RotatingFileHandler(
        path,
        maxBytes=settings.max_size_mb * 1024 * 1024,
        backupCount=settings.backups,
        encoding="utf-8",
    )


def setup_logging(settings: Optional[LogSettings] = None) -> LogSettings:
    """Configure logging for the platform.

    Sets up:
    - Console handler (INFO+ by default, respects NETINTENT_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger writing timing lines to their own file

    Calling it again replaces the handlers it installed before.
    """
    settings = settings or LogSettings.from_env()
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)

    _remove_installed(main_logger)
    _remove_installed(perf_logger)

    # Capture all, handlers filter
    main_logger.setLevel(logging.DEBUG)
    _install(main_logger, logging.StreamHandler(), settings.level, MAIN_FORMAT)
    _install(main_logger, _rotating(settings.log_file, settings), logging.DEBUG, MAIN_FORMAT)

    # Perf lines go to their own file only
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.propagate = False
    _install(perf_logger, _rotating(settings.perf_log_file, settings), logging.DEBUG, PERF_FORMAT)

    main_logger.info(
        f"Logging initialized: level={logging.getLevelName(settings.level)}, file={settings.log_file}"
    )
    perf_logger.info(f"Performance logging to: {settings.perf_log_file}")
    return settings


# === Timing ===

def _context_of(args: tuple, context: Optional[str]) -> Optional[str]:
    """Infer a log context: a pool's ``context`` or an intent's ``target``."""
    if context is not None:
        return context
    if args and hasattr(args[0], "context"):
        return args[0].context
    if len(args) > 1 and hasattr(args[1], "target"):
        return args[1].target
    return None


def _emit(
    operation: str,
    context: Optional[str],
    start: float,
    error: Optional[BaseException] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Log one timing line; successful runs also feed global_stats."""
    elapsed = (time.perf_counter() - start) * 1000
    outcome = "OK" if error is None else f"FAIL: {error}"
    msg = f"{operation:20s} | {context or 'N/A':30s} | {elapsed:8.2f}ms | {outcome}"
    if extra:
        msg += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())

    if error is None:
        perf_logger.info(msg)
        global_stats.record(operation, elapsed)
    else:
        perf_logger.warning(msg)


def timed(operation: str, context: Optional[str] = None):
    """Decorator to log execution time of sync/async functions.

    Args:
        operation: Name of the operation (e.g., "obtain", "synchronize")
        context: Optional log context. Inferred from ``self.context`` or from
            the ``target`` of the first argument when omitted.

    Usage:
        @timed("obtain")
        def obtain(self, key, size=None, tag=None):
            ...

        @timed("audit")
        async def audit(self, intent):
            ...
    """
    def decorator(func: Callable) -> Callable:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs) -> Any:
                ctx = _context_of(args, context)
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _emit(operation, ctx, start, e)
                    raise
                _emit(operation, ctx, start)
                return result

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            ctx = _context_of(args, context)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _emit(operation, ctx, start, e)
                raise
            _emit(operation, ctx, start)
            return result

        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, context: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("patch", context="10.0.0.1", objects=3):
            await devices.patch(...)
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        _emit(operation, context, start, e, extra)
        raise
    _emit(operation, context, start, extra=extra)


@contextmanager
def timed_section_sync(operation: str, context: Optional[str] = None, **extra):
    """Sync context manager for timing code sections."""
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        _emit(operation, context, start, e, extra)
        raise
    _emit(operation, context, start, extra=extra)


@dataclass
class OperationStats:
    """Running aggregate of one operation's timings."""
    count: int = 0
    total: float = 0.0
    min: float = float("inf")
    max: float = 0.0

    @property
    def avg(self) -> float:
        return self.total / self.count if self.count else 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total += duration_ms
        self.min = min(self.min, duration_ms)
        self.max = max(self.max, duration_ms)


class PerfStats:
    """Collect and report performance statistics.

    Keeps one fixed-size aggregate per operation, so a long-running
    reconciler does not accumulate samples.

    Usage:
        stats = PerfStats()
        stats.record("obtain", 1.5)
        stats.record("synchronize", 145.2)
        print(stats.summary())
    """

    def __init__(self):
        self._data: dict[str, OperationStats] = {}
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float) -> None:
        """Record a timing measurement."""
        with self._lock:
            self._data.setdefault(operation, OperationStats()).add(duration_ms)

    def get(self, operation: str) -> OperationStats:
        """Copy of the aggregate for ``operation`` (empty if never recorded)."""
        with self._lock:
            found = self._data.get(operation)
            return replace(found) if found else OperationStats()

    def count(self, operation: str) -> int:
        return self.get(operation).count

    def summary(self) -> str:
        """Generate summary statistics."""
        lines = ["Performance Summary", "=" * 60]

        with self._lock:
            entries = sorted(self._data.items(), key=lambda entry: entry[0])
            entries = [(op, replace(stats)) for op, stats in entries]

        for op, stats in entries:
            lines.append(
                f"{op:20s} | count={stats.count:4d} | "
                f"avg={stats.avg:8.2f}ms | min={stats.min:8.2f}ms | max={stats.max:8.2f}ms"
            )

        return "\n".join(lines)

    def clear(self) -> None:
        """Clear all recorded data."""
        with self._lock:
            self._data.clear()


global_stats = PerfStats()
