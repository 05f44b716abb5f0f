"""Logging system with colored output, file logging and throttled diagnostics"""

import copy
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional


LOGGER_NAMESPACE = "posebind"


class ColoredFormatter(logging.Formatter):
    """Colored log output for terminal."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Records are shared between handlers; color a copy only
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        record.name = f"\033[34m{record.name}{self.RESET}"
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_dir: str = "logs"
) -> logging.Logger:
    """
    Setup logging for the retargeting engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file name
        log_dir: Directory for log files

    Returns:
        Package root logger
    """
    root_logger = logging.getLogger(LOGGER_NAMESPACE)
    root_logger.setLevel(getattr(logging, level.upper()))

    if root_logger.handlers:
        return root_logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_format = ColoredFormatter(
        "%(asctime)s │ %(levelname)-8s │ %(name)-28s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    console_handler.setFormatter(console_format)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        file_path = log_path / f"{log_file}_{timestamp}.log"

        file_handler = logging.FileHandler(file_path)
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        file_handler.setFormatter(file_format)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {file_path}")

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a named logger under the posebind namespace.

    Args:
        name: Module name (e.g., "motion.dispatcher", "motion.resolver")

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


class RateLimitedLogger:
    """
    Emits keyed diagnostic events at most once per interval.

    Events that arrive inside the interval are counted, and the count is
    appended to the next message that gets through.
    """

    def __init__(self, logger: logging.Logger, interval: float = 5.0, clock=time.monotonic):
        self.logger = logger
        self.interval = interval
        self._clock = clock
        self._last_emit: Dict[str, float] = {}
        self._suppressed: Dict[str, int] = {}

    def log(self, level: int, key: str, message: str) -> bool:
        """Log `message` under `key` unless it was emitted recently.

        Returns:
            True if the message was emitted
        """
        now = self._clock()
        last = self._last_emit.get(key)
        if last is not None and now - last < self.interval:
            self._suppressed[key] = self._suppressed.get(key, 0) + 1
            return False

        suppressed = self._suppressed.pop(key, 0)
        if suppressed:
            message = f"{message} ({suppressed} similar suppressed)"
        self._last_emit[key] = now
        self.logger.log(level, message)
        return True

    def debug(self, key: str, message: str) -> bool:
        return self.log(logging.DEBUG, key, message)

    def info(self, key: str, message: str) -> bool:
        return self.log(logging.INFO, key, message)

    def warning(self, key: str, message: str) -> bool:
        return self.log(logging.WARNING, key, message)

    def suppressed_count(self, key: str) -> int:
        return self._suppressed.get(key, 0)

    def reset(self) -> None:
        self._last_emit.clear()
        self._suppressed.clear()
