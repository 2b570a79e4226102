"""
Logging setup and timing helpers.

Console output is a single colored line per record; ``LogTimer`` adds
duration and record counts to start/finish messages.
"""

import logging
import time
import sys
from datetime import datetime
from typing import Any


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        level_str = f"{color}{record.levelname:8}{self.RESET}"
        location = f"{record.module}.{record.funcName}" if record.funcName != '<module>' else record.module
        message = record.getMessage()

        extras = []
        if hasattr(record, 'duration_ms'):
            extras.append(f"duration={record.duration_ms:.1f}ms")
        if hasattr(record, 'record_count'):
            extras.append(f"records={record.record_count}")
        if hasattr(record, 'transitions'):
            extras.append(f"transitions={record.transitions}")
        extra_str = f" [{', '.join(extras)}]" if extras else ""

        line = f"{timestamp} | {level_str} | {location:30} | {message}{extra_str}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "DEBUG") -> None:
    """
    Set up console logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter())
    handler.setLevel(getattr(logging, level.upper()))

    root.setLevel(getattr(logging, level.upper()))
    root.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.INFO)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogTimer:
    """
    Context manager for timing operations with automatic logging.

    Usage:
        with LogTimer(logger, "Reachability cycle") as timer:
            # ... do work ...
            timer.set_record_count(len(devices))
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.INFO,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time = None
        self.record_count = None
        self.extra_info = {}

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.log(self.level, f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000

        extra = {'duration_ms': duration_ms}
        if self.record_count is not None:
            extra['record_count'] = self.record_count
        extra.update(self.extra_info)

        if exc_type is not None:
            self.logger.error(
                f"Failed: {self.operation} - {exc_val!r}",
                extra=extra
            )
        else:
            self.logger.log(
                self.level,
                f"Completed: {self.operation}",
                extra=extra
            )

        return False

    def set_record_count(self, count: int) -> None:
        """Set the number of records processed."""
        self.record_count = count

    def add_info(self, key: str, value: Any) -> None:
        """Add extra info to the completion log."""
        self.extra_info[key] = value
