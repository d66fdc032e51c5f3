"""Logging configuration for fleetcraft.

Provides:
- Console output at a configurable level
- File-based logging with rotation
- A separate performance logger with timing helpers for provider and
  executor calls

Environment Variables:
    FLEETCRAFT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    FLEETCRAFT_LOG_FILE: Path to log file (default: ~/.fleetcraft/fleetcraft.log)
    FLEETCRAFT_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    FLEETCRAFT_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from fleetcraft.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("gather_facts")
    async def gather_facts(self, host):
        ...

    async with timed_section("create", target="net_vpc.main"):
        ...
"""
import functools
import inspect
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("fleetcraft.perf")

LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s"
PERF_FORMAT = "%(asctime)s.%(msecs)03d | PERF | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level(override: Optional[str] = None) -> int:
    """Get log level from an explicit value or the environment."""
    level_str = (override or os.environ.get("FLEETCRAFT_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".fleetcraft" / "fleetcraft.log"
    return Path(os.environ.get("FLEETCRAFT_LOG_FILE", str(default_path)))


def setup_logging(level: Optional[str] = None, log_to_file: bool = True) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects FLEETCRAFT_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for timing metrics
    """
    log_level = get_log_level(level)
    main_format = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger("fleetcraft")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()
    perf_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)
    root_logger.addHandler(console_handler)

    perf_logger.setLevel(logging.DEBUG)

    if log_to_file:
        log_file = get_log_file()
        max_size_mb = int(os.environ.get("FLEETCRAFT_LOG_MAX_SIZE", "10"))
        backup_count = int(os.environ.get("FLEETCRAFT_LOG_BACKUPS", "5"))
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(main_format)
        root_logger.addHandler(file_handler)

        # Separate file for easy analysis
        perf_log_file = log_file.parent / "fleetcraft-perf.log"
        perf_handler = RotatingFileHandler(
            perf_log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        perf_handler.setLevel(logging.DEBUG)
        perf_handler.setFormatter(logging.Formatter(PERF_FORMAT, datefmt=DATE_FORMAT))
        perf_logger.addHandler(perf_handler)
        perf_logger.propagate = False
        root_logger.debug(f"Logging to file {log_file}, perf to {perf_log_file}")

    root_logger.debug(f"Logging initialized: level={logging.getLevelName(log_level)}")


def _perf_line(operation: str, target: Optional[str], elapsed: float, status: str) -> str:
    return f"{operation:14s} | {target or 'N/A':30s} | {elapsed:8.2f}ms | {status}"


def timed(operation: str, target: Optional[str] = None):
    """Decorator to log execution time of a coroutine function.

    The target defaults to the first positional argument after ``self``
    when that is a string or has an ``alias`` attribute.

    Usage:
        @timed("gather_facts")
        async def gather_facts(self, host):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            name = target
            if name is None and len(args) > 1:
                candidate = args[1]
                name = getattr(candidate, "alias", None) or (
                    candidate if isinstance(candidate, str) else None
                )

            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, name, elapsed, f"FAIL: {e}"))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_perf_line(operation, name, elapsed, "OK"))
            return result

        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"timed() expects a coroutine function, got {func!r}")
        return wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, target: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("execute", target="web1", module="package"):
            await executor.execute(...)
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = _perf_line(operation, target, elapsed, f"FAIL: {e}")
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise
    elapsed = (time.perf_counter() - start) * 1000
    msg = _perf_line(operation, target, elapsed, "OK")
    if extra_str:
        msg += f" | {extra_str}"
    perf_logger.info(msg)
