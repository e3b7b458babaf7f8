"""
volo-dev logging infrastructure.

Every service of a dev session writes to the same terminal, so each line is
tagged with the component it came from:

    12:03:11 [volo] Port plan resolved
    12:03:12 [postgres] database system is ready to accept connections
    12:03:14 [frontend] VITE ready in 412 ms

The same records go to a rotating JSONL file under ``<project>/data/logs``
so a session can be inspected after the fact.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

ROOT_LOGGER = "volo_dev"
LOG_FILE_NAME = "dev.log"

# =============================================================================
# Terminal Colors (respects NO_COLOR)
# =============================================================================

_NO_COLOR = bool(os.environ.get("NO_COLOR")) or not sys.stdout.isatty()


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "" if _NO_COLOR else "\033[0m"
    DIM = "" if _NO_COLOR else "\033[2m"

    # Log levels
    DEBUG = "" if _NO_COLOR else "\033[36m"  # Cyan
    WARNING = "" if _NO_COLOR else "\033[33m"  # Yellow
    ERROR = "" if _NO_COLOR else "\033[31m"  # Red
    CRITICAL = "" if _NO_COLOR else "\033[35m"  # Magenta

    # Components
    VOLO = "" if _NO_COLOR else "\033[35m"  # Magenta
    BACKEND = "" if _NO_COLOR else "\033[34m"  # Blue
    FRONTEND = "" if _NO_COLOR else "\033[36m"  # Cyan
    DATABASE = "" if _NO_COLOR else "\033[32m"  # Green
    FIREBASE = "" if _NO_COLOR else "\033[33m"  # Yellow


SERVICE_COLORS = {
    "backend": Colors.BACKEND,
    "frontend": Colors.FRONTEND,
    "postgres": Colors.DATABASE,
    "firebaseAuth": Colors.FIREBASE,
    "firebaseUI": Colors.FIREBASE,
}


# =============================================================================
# Formatters
# =============================================================================


class JSONLFormatter(logging.Formatter):
    """
    Formats log records as JSON Lines.

    Example output:
    {"timestamp":"2026-01-15T10:30:45.123000+00:00","level":"WARNING","component":"frontend","message":"..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "component": getattr(record, "component", "volo"),
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DEBUG,
        logging.WARNING: Colors.WARNING,
        logging.ERROR: Colors.ERROR,
        logging.CRITICAL: Colors.CRITICAL,
    }

    def format(self, record: logging.LogRecord) -> str:
        component = getattr(record, "component", "volo")
        component_color = getattr(record, "component_color", Colors.VOLO)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        if _NO_COLOR:
            prefix = f"{timestamp} [{component}]"
        else:
            prefix = (
                f"{Colors.DIM}{timestamp}{Colors.RESET} "
                f"{component_color}[{component}]{Colors.RESET}"
            )

        if record.levelno != logging.INFO:
            level_name = record.levelname
            if not _NO_COLOR:
                level_name = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level_name}{Colors.RESET}"
            prefix = f"{prefix} {level_name}:"

        message = f"{prefix} {record.getMessage()}"
        if record.exc_info and record.levelno >= logging.ERROR:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


# =============================================================================
# Logger Setup
# =============================================================================


class _ComponentFilter(logging.Filter):
    """Stamp records with a component tag unless one is already set."""

    def __init__(self, component: str, color: str) -> None:
        super().__init__()
        self.component = component
        self.color = color

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            record.component = self.component
        if not hasattr(record, "component_color"):
            record.component_color = self.color
        return True


_service_loggers: dict[str, logging.Logger] = {}


def setup_logging(
    log_dir: Path | None = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3,
) -> Path | None:
    """
    Initialize console (and optionally file) logging for the ``volo_dev`` tree.

    Args:
        log_dir: Directory for the JSONL log file; ``None`` for console only
        level: Minimum log level
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Path to the log file, if one was configured
    """
    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(level)
    root_logger.propagate = False

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ConsoleFormatter())
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONLFormatter())
    file_handler.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    return log_file


def parse_level(name: str | None) -> int:
    """Map a level name such as ``debug`` to its logging constant (INFO if unknown)."""
    if not name:
        return logging.INFO
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else logging.INFO


def get_service_logger(service: str) -> logging.Logger:
    """
    Get the logger that relays a service's output.

    Args:
        service: Service name (e.g. "backend")

    Returns:
        Logger tagged with the service name
    """
    if service in _service_loggers:
        return _service_loggers[service]

    logger = logging.getLogger(f"{ROOT_LOGGER}.services.{service}")
    logger.addFilter(_ComponentFilter(service, SERVICE_COLORS.get(service, Colors.VOLO)))
    _service_loggers[service] = logger
    return logger


def log_with_context(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """
    Log a message with structured fields.

    The console shows only ``message``; the JSONL file also records the
    fields under ``context`` so a session can be reconstructed per service
    (port, pid, timings).

    Example:
        log_with_context(logger, logging.INFO, "backend ready", service="backend", port=8787)
    """
    logger.log(level, message, extra={"context": context} if context else None)
