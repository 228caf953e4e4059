"""Structured logging configuration for the process copilot."""

from __future__ import annotations

import logging
import sys


class StructuredFormatter(logging.Formatter):
    """Formats records as `key=value` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict):
            log_data.update(extra_data)
        line = " ".join(f"{key}={value}" for key, value in log_data.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a structured stdout handler to the package logger once."""

    logger = logging.getLogger("process_copilot")
    if not any(isinstance(h.formatter, StructuredFormatter) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
