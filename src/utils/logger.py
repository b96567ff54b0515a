"""Structured logging configuration for scan and resolution runs."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

# Create logs directory
LOGS_DIR = Path(__file__).parent.parent.parent / "logs"
LOGS_DIR.mkdir(exist_ok=True)

# Log file path
LOG_FILE = LOGS_DIR / "tier_resolver.log"


class PerformanceLogger:
    """Logger with run metrics tracking."""

    def __init__(self, name: str) -> None:
        """
        Initialize performance logger.

        Args:
            name: Logger name (usually module name)
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)

        # Prevent duplicate handlers
        if not self.logger.handlers:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                ),
            )

            file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - "
                    "%(funcName)s:%(lineno)d - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                ),
            )

            self.logger.addHandler(console_handler)
            self.logger.addHandler(file_handler)

        # Run metrics, updated from worker threads
        self.metrics: dict[str, float] = {}
        self._metrics_lock = threading.Lock()

    def debug(self, message: str, *args: object, **kwargs: object) -> None:
        """Log debug message."""
        self.logger.debug(message, *args, **kwargs)

    def info(self, message: str, *args: object, **kwargs: object) -> None:
        """Log info message."""
        self.logger.info(message, *args, **kwargs)

    def warning(self, message: str, *args: object, **kwargs: object) -> None:
        """Log warning message."""
        self.logger.warning(message, *args, **kwargs)

    def error(self, message: str, *args: object, **kwargs: object) -> None:
        """Log error message."""
        self.logger.error(message, *args, **kwargs)

    def exception(self, message: str, *args: object, **kwargs: object) -> None:
        """Log exception with traceback."""
        self.logger.exception(message, *args, **kwargs)

    def record_metric(self, name: str, value: float) -> None:
        """
        Record a run metric, replacing any previous value.

        Args:
            name: Metric name (e.g., "identifiers_per_sec", "logs_examined")
            value: Metric value
        """
        with self._metrics_lock:
            self.metrics[name] = value
        self.debug(f"Metric {name}: {value:.2f}")

    def increment_metric(self, name: str, amount: float = 1.0) -> None:
        """Add to a counter metric."""
        with self._metrics_lock:
            self.metrics[name] = self.metrics.get(name, 0.0) + amount

    def log_progress(
        self,
        current: int,
        total: int,
        item_name: str = "items",
        update_interval: int = 100,
    ) -> None:
        """
        Log progress with percentage.

        Args:
            current: Current progress
            total: Total items
            item_name: Name of items being processed
            update_interval: Log every N items
        """
        if current % update_interval == 0 or current == total:
            percentage = (current / total * 100) if total > 0 else 0
            self.info(
                f"Progress: {current}/{total} {item_name} ({percentage:.1f}%)",
            )

    def log_summary(self) -> None:
        """Log summary of all recorded metrics."""
        with self._metrics_lock:
            snapshot = dict(self.metrics)
        if not snapshot:
            return

        self.info("=== Run Summary ===")
        for name, value in snapshot.items():
            self.info(f"{name}: {value:.2f}")
        self.info("===================")


def get_logger(name: str) -> PerformanceLogger:
    """
    Get or create a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        PerformanceLogger instance
    """
    return PerformanceLogger(name)
