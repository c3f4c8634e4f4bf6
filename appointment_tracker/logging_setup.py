"""Logging sinks: console, size-rotated file and an in-memory ring buffer."""

import logging
import os
from collections import deque
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import LOG_MAX_BYTES

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# "warn" and "fatal" are accepted for compatibility with TRACKER_LOG_LEVEL
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

ROOT_LOGGER = "appointment_tracker"


def level_from_name(name: str) -> int:
    try:
        return LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {name}") from None


class TimestampRotatingFileHandler(RotatingFileHandler):
    """
    Rotates when the file exceeds max_bytes by renaming it to
    <file>.<timestamp> and starting a fresh file.
    """

    def __init__(self, filename: Path | str, max_bytes: int = LOG_MAX_BYTES, encoding: str = "utf-8"):
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(filename, maxBytes=max_bytes, backupCount=0, encoding=encoding)

    def rotated_name(self) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
        return f"{self.baseFilename}.{timestamp}"

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None
        if os.path.exists(self.baseFilename):
            os.replace(self.baseFilename, self.rotated_name())
        if not self.delay:
            self.stream = self._open()


class RingBufferHandler(logging.Handler):
    """Keeps the most recent formatted records for a UI to poll."""

    def __init__(self, capacity: int = 500):
        super().__init__()
        self.records: deque[dict] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.records.append({
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            })
        except Exception:
            self.handleError(record)

    def recent(self, limit: Optional[int] = None) -> list[dict]:
        items = list(self.records)
        if limit is None:
            return items
        return items[-limit:] if limit > 0 else []


_ring_buffer = RingBufferHandler()


def get_ring_buffer() -> RingBufferHandler:
    return _ring_buffer


def setup_logging(
    level: str = "info",
    log_file: Optional[Path] = None,
    max_bytes: int = LOG_MAX_BYTES,
) -> logging.Logger:
    """
    Configure the package logger with console, file and ring-buffer sinks.

    Calling it again replaces the handlers instead of stacking them.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level_from_name(level))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if handler is not _ring_buffer:
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        file_handler = TimestampRotatingFileHandler(log_file, max_bytes=max_bytes)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.addHandler(_ring_buffer)
    return logger


def set_level(level: str) -> None:
    logging.getLogger(ROOT_LOGGER).setLevel(level_from_name(level))
