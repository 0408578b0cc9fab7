"""
Structured logging system for crmlinks.

Provides centralized logging with console/file destinations, log levels,
and per-batch metrics for monitoring import quality.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks import metrics (row outcomes, conflicts, normalization fallbacks).
    """

    def __init__(
        self,
        name: str = "crmlinks",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = False,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers

        self.metrics = {}
        self.reset_metrics()

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"crmlinks_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def reset_metrics(self):
        self.metrics = {
            "rows_processed": 0,
            "rows_by_status": {"created": 0, "merged": 0, "skipped": 0, "error": 0},
            "conflicts": 0,
            "errors_by_type": {},
            "fallbacks_by_field": {},
        }

    def record_row(self, status: str):
        """Record the outcome status of one processed row."""
        self.metrics["rows_processed"] += 1
        by_status = self.metrics["rows_by_status"]
        by_status[status] = by_status.get(status, 0) + 1

    def record_error(self, error_type: str):
        errors = self.metrics["errors_by_type"]
        errors[error_type] = errors.get(error_type, 0) + 1

    def record_conflicts(self, count: int):
        self.metrics["conflicts"] += count

    def record_fallback(self, field: str):
        """Record a value that normalized to empty."""
        fallbacks = self.metrics["fallbacks_by_field"]
        fallbacks[field] = fallbacks.get(field, 0) + 1

    def get_metrics(self) -> dict:
        """Return current metrics with the duplicate rate filled in."""
        metrics_copy = json.loads(json.dumps(self.metrics))
        processed = metrics_copy["rows_processed"]
        if processed > 0:
            metrics_copy["merge_rate"] = round(
                metrics_copy["rows_by_status"].get("merged", 0) / processed, 3
            )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()
        by_status = metrics["rows_by_status"]

        self.info("=== Import Batch Metrics ===")
        self.info(f"Rows: {metrics['rows_processed']}")
        self.info(
            f"Created: {by_status.get('created', 0)} | Merged: {by_status.get('merged', 0)} | "
            f"Skipped: {by_status.get('skipped', 0)} | Errors: {by_status.get('error', 0)}"
        )
        if metrics["conflicts"]:
            self.info(f"Field conflicts kept on existing records: {metrics['conflicts']}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")

        if metrics["fallbacks_by_field"]:
            self.info("Normalization Fallbacks:")
            for field, count in metrics["fallbacks_by_field"].items():
                self.info(f"  {field}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "crmlinks",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
