"""
Enhanced Logging System - Structured logging with rotation for engine sessions
"""

import json
import logging
import os
import sys
import threading
import time
from collections import deque
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m'
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        # Restore the plain level name for other handlers sharing the record
        color = self.COLORS.get(record.levelname, '')
        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class EventBuffer:
    """Recent engine events kept in memory for session summaries"""

    def __init__(self, max_size: int = 500):
        self._buffer: deque = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def add(self, record: Dict[str, Any]):
        with self._lock:
            self._buffer.append(record)

    def get_recent(self, count: int = 100, level: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            events = list(self._buffer)
        if level:
            events = [e for e in events if e.get("level") == level]
        return events[-count:]

    def clear(self):
        with self._lock:
            self._buffer.clear()


class BufferedHandler(logging.Handler):
    """Handler that stores context-carrying records in an EventBuffer"""

    def __init__(self, buffer: EventBuffer):
        super().__init__()
        self.buffer = buffer

    def emit(self, record: logging.LogRecord):
        event = {
            "timestamp": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, 'extra_data'):
            event["data"] = record.extra_data
        self.buffer.add(event)


event_buffer = EventBuffer()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    structured: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
):
    """
    Setup logging for an engine process

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Path to log file (optional, always JSON)
        structured: Use JSON structured logging on the console
        max_bytes: Max log file size before rotation
        backup_count: Number of backup files to keep
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    if structured:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        ))
    root_logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    buffer_handler = BufferedHandler(event_buffer)
    buffer_handler.setLevel(logging.INFO)
    root_logger.addHandler(buffer_handler)


def get_recent_events(count: int = 100, level: Optional[str] = None) -> List[Dict[str, Any]]:
    return event_buffer.get_recent(count, level)


class LogContext:
    """Context manager for adding extra data to logs"""

    def __init__(self, **extra_data):
        self.extra_data = extra_data
        self._old_factory = None

    def __enter__(self):
        self._old_factory = logging.getLogRecordFactory()
        extra = self.extra_data

        def factory(*args, **kwargs):
            record = self._old_factory(*args, **kwargs)
            record.extra_data = extra
            return record

        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, *args):
        logging.setLogRecordFactory(self._old_factory)


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional context data"""
    if not logger.isEnabledFor(level):
        return
    with LogContext(**context):
        logger.log(level, message)
