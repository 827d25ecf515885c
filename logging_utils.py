"""
Logging Utilities - Throttled logging so a polling caller can't flood the log
"""

import logging
import time
from collections import defaultdict
from typing import Callable, Dict, Optional


class ThrottledLogger:
    """
    A logger wrapper that throttles repeated log messages.
    Used for refusals, which repeat on every poll while a stop condition holds.
    """

    def __init__(self, base_logger: logging.Logger, min_interval: float = 30.0,
                 clock: Callable[[], float] = time.time):
        self._logger = base_logger
        self._min_interval = min_interval
        self._clock = clock
        self._last_log_times: Dict[str, float] = {}
        self._suppressed_counts: Dict[str, int] = defaultdict(int)

    def _should_log(self, key: str) -> bool:
        now = self._clock()
        last = self._last_log_times.get(key)
        if last is None or now - last >= self._min_interval:
            self._last_log_times[key] = now
            return True
        self._suppressed_counts[key] += 1
        return False

    def _get_suppressed_suffix(self, key: str) -> str:
        count = self._suppressed_counts.pop(key, 0)
        if count > 0:
            return f" (+{count} suppressed)"
        return ""

    def log(self, level: int, msg: str, key: Optional[str] = None):
        log_key = key or msg[:50]
        if self._should_log(log_key):
            self._logger.log(level, f"{msg}{self._get_suppressed_suffix(log_key)}")

    def info(self, msg: str, key: Optional[str] = None):
        self.log(logging.INFO, msg, key)

    def warning(self, msg: str, key: Optional[str] = None):
        self.log(logging.WARNING, msg, key)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(msg, *args, **kwargs)

    def reset(self, key: Optional[str] = None):
        """Forget throttle history so the next message logs immediately"""
        if key is None:
            self._last_log_times.clear()
            self._suppressed_counts.clear()
        else:
            self._last_log_times.pop(key, None)
            self._suppressed_counts.pop(key, None)

