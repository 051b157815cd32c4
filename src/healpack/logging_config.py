"""
Centralized Logging Configuration for pipeline phases

Every phase (Prophet, each build attempt, Surgeon, deploy) runs as its own
process. Each one calls ``configure_logging`` with the same audit log path, so
the append-mode file handler accumulates one plain-text, timestamped audit
trail across the whole pipeline run.

Usage:
    from healpack.logging_config import configure_logging

    configure_logging(audit_log=Path(".healpack/healpack.log"))

Environment Variables:
    HEALPACK_LOG_LEVEL - Set log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    HEALPACK_LOG_FORMAT - "text" (default) or "json" for console output
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for machine-readable console output.

    Each entry includes timestamp, level, logger name, message, the process id
    (one process per phase) and any extra fields added to the log record.
    """

    _STANDARD_ATTRS = {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "pid": record.process,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._STANDARD_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def configure_logging(
    audit_log: Optional[Path] = None,
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_to_console: bool = True,
) -> logging.Logger:
    """
    Configure the ``healpack`` logger for the current phase process.

    Args:
        audit_log: Append-mode audit log file (None disables file logging)
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "text" or "json" for the console handler
        log_to_console: Whether to log to stderr

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("healpack")

    # Clear existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_level is None:
        log_level = os.environ.get("HEALPACK_LOG_LEVEL", "INFO")
    if log_format is None:
        log_format = os.environ.get("HEALPACK_LOG_FORMAT", "text")

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(logging.DEBUG)

    text_formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)

    if log_to_console:
        # stderr keeps stdout free for command summaries
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        if log_format.lower() == "json":
            console_handler.setFormatter(StructuredFormatter(datefmt=DATE_FORMAT))
        else:
            console_handler.setFormatter(text_formatter)
        logger.addHandler(console_handler)

    if audit_log is not None:
        audit_log = Path(audit_log)
        audit_log.parent.mkdir(parents=True, exist_ok=True)
        # Audit trail is always plain text and always appended to
        file_handler = logging.FileHandler(audit_log, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG if level <= logging.DEBUG else logging.INFO)
        file_handler.setFormatter(text_formatter)
        logger.addHandler(file_handler)

    return logger
