#!/usr/bin/env python3
"""
Aeroduel Simulator Logging Configuration

Centralized logging setup for consistent formatting across the simulator.
Supports both development (console) and production (file) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Joining match...")
    logger.error("Join failed", extra={"client_id": "sim-user-001", "plane_id": "sim-plane-001"})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Any, TYPE_CHECKING
import os

if TYPE_CHECKING:
    from mobile.state import Session


# ========================================
#           LOGGING FORMATTERS
# ========================================

class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        # Add session context if available
        session_context = []

        # Extract common session fields from extra data
        if hasattr(record, 'client_id'):
            session_context.append(f"client={record.client_id}")
        if hasattr(record, 'plane_id'):
            session_context.append(f"plane={record.plane_id}")
        if hasattr(record, 'tag'):
            session_context.append(f"tag={record.tag}")
        if getattr(record, 'match_id', None):
            session_context.append(f"match={record.match_id}")

        # Add context to message if present; copy so other handlers see the original
        if session_context:
            context_str = f"[{' '.join(session_context)}] "
            record = logging.makeLogRecord(record.__dict__)
            record.msg = f"{context_str}{record.msg}"

        return super().format(record)


class ColoredFormatter(GenericFormatter):
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
        # Add color to level name
        if record.levelname in self.COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.COLORS['RESET']}"

        return super().format(record)


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

    Examples:
        logger = get_logger(__name__)
        logger.info("Channel open")

        # With context
        logger.warning("Unknown tag", extra={
            "client_id": "sim-user-001",
            "plane_id": "sim-plane-001",
            "tag": "match:paused"
        })
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    # Determine log level
    log_level = _get_log_level(level)
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if _is_development():
        _add_file_handler(logger)
        _add_console_handler(logger, colored=True)
    else:
        # Production: Clean console + file logging
        _add_console_handler(logger, colored=False)
        _add_file_handler(logger)

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    if level:
        return getattr(logging, level.upper(), logging.INFO)

    # Default based on environment
    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt='[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter = ColoredFormatter(
            fmt=fmt,
            datefmt='%H:%M:%S'
        )
    else:
        formatter = GenericFormatter(
            fmt=fmt,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger) -> None:
    """Add file handler for production logging"""

    # Create logs directory
    log_dir = Path(os.getenv("AEROSIM_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "aerosim.log"
    handler = logging.FileHandler(log_file, encoding="utf-8")

    formatter = GenericFormatter(
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

    # Windows-specific check
    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode" or "WindowsTerminal" in os.getenv("TERM", "")

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


def log_session_event(logger: logging.Logger, level: str, message: str,
                      session: Optional["Session"] = None,
                      **context: Any) -> None:
    """
    Log a session-related message with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        session: Session record for automatic context extraction
        **context: Additional context fields (e.g. tag="plane:kicked")

    Example:
        log_session_event(logger, "info", "Kicked from match",
                          session=record, tag="plane:kicked")
    """

    extra_context = {}

    # Extract context from the session record
    if session is not None:
        extra_context.update({
            'client_id': session.client_id,
            'plane_id': session.entity_id,
            'match_id': session.match_context.match_id if session.match_context else None,
        })

    # Add additional context
    extra_context.update(context)

    # Log with context
    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
