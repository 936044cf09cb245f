"""
Structured logging with gesture emission logging.
"""

import os
import logging
import logging.handlers
import time
from functools import wraps


def setup_logging(level="INFO", log_file=None, max_size_mb=10, backup_count=3):
    """Configure console (and optional rotating file) logging for the application."""
    console_format = "%(asctime)s  %(levelname)-5s  %(message)s"
    file_format = "%(asctime)s [%(levelname)-7s] %(name)-25s | %(message)s"
    date_format = "%H:%M:%S"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    root_logger.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(console_format, datefmt=date_format))
    root_logger.addHandler(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(file_format, datefmt=date_format))
        root_logger.addHandler(file_handler)

    return root_logger


class GestureLogger:
    """Records emitted gestures to the ``gesture_events`` logger.

    Subscribe :meth:`on_gesture_emitted` to ``Events.GESTURE_EMITTED``.
    """

    def __init__(self, max_history=500):
        self.logger = logging.getLogger("gesture_events")
        self._gesture_history = []
        self._max_history = max_history

    def log_emission(self, gesture_name, confidence=None, text=None):
        """Log a gesture that passed the stability filter."""
        entry = {
            "timestamp": time.time(),
            "gesture": gesture_name,
            "confidence": confidence,
            "text": text,
        }
        self._gesture_history.append(entry)
        if len(self._gesture_history) > self._max_history:
            self._gesture_history = self._gesture_history[-self._max_history:]
        self.logger.info(
            "Gesture: %-15s | Confidence: %s | Text: %r",
            gesture_name,
            f"{confidence:.2f}" if confidence is not None else "N/A",
            text,
        )

    def on_gesture_emitted(self, name, confidence=None, **kwargs):
        self.log_emission(name, confidence)

    def get_history(self, last_n=None):
        if last_n:
            return self._gesture_history[-last_n:]
        return self._gesture_history.copy()

    @property
    def total_gestures(self):
        return len(self._gesture_history)


def log_timing(func):
    """Decorator to log function execution time."""
    logger = logging.getLogger(func.__module__)

    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = (time.perf_counter() - start) * 1000
            logger.debug("%s took %.2fms", func.__name__, elapsed)

    return wrapper
