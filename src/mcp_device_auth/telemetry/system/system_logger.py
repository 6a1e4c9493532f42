"""System logger for operational events.

This module provides a singleton system logger for credential lifecycle
events (keychain access, device flow progress, token refresh, scope denials).

Logging strategy:
- Console (stderr): INFO and above by default, DEBUG with `--debug`
- File (system.jsonl): Only issues (WARNING, ERROR, CRITICAL)

Messages are dicts with at least an "event" key and usually a "message":

    logger.warning({"event": "token_refresh_failed", "message": "..."})

Component loggers are children of the system logger
(e.g. "mcp-device-auth.system.keychain") so they share its handlers.

The file handler is configured separately via configure_system_logger_file()
once the user's log_dir from config is available.
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "configure_system_logger_file",
    "get_system_logger",
    "set_console_level",
]

import logging
import sys
from pathlib import Path

from mcp_device_auth.constants import APP_NAME
from mcp_device_auth.utils.logging.iso_formatter import ISO8601Formatter

SYSTEM_LOGGER_NAME = f"{APP_NAME}.system"


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output.

    Extracts 'message' or 'event' field from dict messages for cleaner stderr output.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human-readable console output.

        Args:
            record: The log record to format.

        Returns:
            str: Formatted log message with level prefix.
        """
        if isinstance(record.msg, dict):
            msg = record.msg.get("message") or record.msg.get("event", "")
            return f"{record.levelname}: {msg}"
        return f"{record.levelname}: {record.getMessage()}"


# Module-level singleton logger
_system_logger: logging.Logger | None = None
_stderr_handler: logging.Handler | None = None
_file_handler_configured: bool = False


def get_system_logger(component: str | None = None) -> logging.Logger:
    """Get the singleton system logger, or a child logger for a component.

    Creates the logger on first call with stderr handler only.
    File handler is added later via configure_system_logger_file().

    Args:
        component: Optional component name ("keychain", "device_flow", ...).

    Returns:
        logging.Logger: Configured system logger (or child) instance.

    Example:
        >>> logger = get_system_logger("token_lifecycle")
        >>> logger.warning({"event": "token_refresh_failed", "message": "..."})
    """
    global _system_logger, _stderr_handler

    if _system_logger is None:
        _system_logger = logging.getLogger(SYSTEM_LOGGER_NAME)
        _system_logger.setLevel(logging.DEBUG)
        _system_logger.propagate = False  # Don't propagate to root logger

        # Close and remove any existing handlers to avoid duplicates
        for handler in _system_logger.handlers:
            handler.close()
        _system_logger.handlers.clear()

        _stderr_handler = logging.StreamHandler(sys.stderr)
        _stderr_handler.setLevel(logging.INFO)
        _stderr_handler.setFormatter(ConsoleFormatter())
        _system_logger.addHandler(_stderr_handler)

    if component:
        return _system_logger.getChild(component)
    return _system_logger


def set_console_level(level: int | str) -> None:
    """Change the stderr handler level (e.g. DEBUG for `--debug`).

    Args:
        level: Logging level as int or name ("DEBUG", "INFO", ...).
    """
    get_system_logger()
    assert _stderr_handler is not None
    _stderr_handler.setLevel(level)


def configure_system_logger_file(log_path: Path) -> bool:
    """Configure the system logger's file handler with the user's log path.

    Should be called once after config is loaded. The file handler logs
    WARNING, ERROR, CRITICAL only (persistent issues).

    Args:
        log_path: Path to the system log file.

    Returns:
        True if the file handler is active, False if the log directory
        could not be created (stderr logging still works).
    """
    global _file_handler_configured

    if _file_handler_configured:
        return True

    logger = get_system_logger()

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if sys.platform != "win32":
            try:
                log_path.parent.chmod(0o700)
            except OSError:
                pass  # Permission changes might fail on some systems
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        logger.warning(
            {
                "event": "log_file_unavailable",
                "message": f"Cannot write system log to {log_path}: {e}",
                "log_path": str(log_path),
            }
        )
        return False

    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ISO8601Formatter())
    logger.addHandler(file_handler)

    _file_handler_configured = True
    return True
