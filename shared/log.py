#!/usr/bin/env python3
"""
Node client logging configuration

Centralized logging setup for consistent formatting across the project.
The protocol core never formats its own output: it reports facts through
``log_event`` and the formatters below decide how they are rendered.

Usage:
    from shared.log import get_logger, log_event

    logger = get_logger(__name__)
    logger.info("Connecting...")
    log_event(logger, "request-sent", request_id=1, method="system_name")
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Any
import os


LOG_FILE_ENV = "SUBSTRATE_HANDSHAKE_LOG_FILE"
LOG_LEVEL_ENV = "SUBSTRATE_HANDSHAKE_LOG_LEVEL"


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ContextFormatter(logging.Formatter):
    """Prefix records with the structured fields attached through ``extra``"""

    CONTEXT_FIELDS = (
        ("event", "event"),
        ("endpoint", "endpoint"),
        ("state", "state"),
        ("request_id", "id"),
        ("method", "method"),
    )

    def format(self, record: logging.LogRecord) -> str:
        context = []
        for attr, label in self.CONTEXT_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                context.append(f"{label}={value}")

        message = super().format(record)
        if context:
            return f"[{' '.join(context)}] {message}"
        return message


class ColoredFormatter(ContextFormatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    logger.setLevel(_get_log_level(level))

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    _add_console_handler(logger, colored=_is_development())
    if os.getenv(LOG_FILE_ENV):
        _add_file_handler(logger, Path(os.environ[LOG_FILE_ENV]))

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    if level is None:
        level = os.getenv(LOG_LEVEL_ENV)
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    return logging.DEBUG if os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    # stderr keeps stdout free for the query report
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter = ColoredFormatter(fmt=fmt, datefmt='%H:%M:%S')
    else:
        formatter = ContextFormatter(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger, log_file: Path) -> None:
    """Add file handler writing to ``log_file``"""

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)

    formatter = ContextFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    # stderr must be a terminal
    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False

    # TERM should not be dumb
    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode"

    return True

# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)


def log_event(logger: logging.Logger, event: str, message: Optional[str] = None,
              level: str = "info", **fields: Any) -> None:
    """
    Report a protocol event with structured context.

    The event name and every field are attached to the record so handlers
    can read them back (``record.event``, ``record.request_id``...).

    Args:
        logger: Logger instance
        event: Event name, e.g. "request-sent"
        message: Human readable text; defaults to the event name
        level: Log level ("debug", "info", "warning", "error")
        **fields: Event payload, e.g. request_id=1, method="system_name"

    Example:
        log_event(logger, "response-received", request_id=3, result="Development")
    """
    extra = {"event": event, "fields": dict(fields)}
    extra.update(fields)

    text = message or event
    details = " ".join(
        f"{key}={value!r}" for key, value in fields.items()
        if key not in ("request_id", "method", "endpoint", "state")
    )
    if details:
        text = f"{text} {details}"

    log_func = getattr(logger, level.lower())
    log_func(text, extra=extra)
