"""Shared CLI utility functions.

Provides common helpers for CLI commands to avoid duplication.
"""

from __future__ import annotations

__all__ = [
    "CommandError",
    "load_auth_config_or_exit",
    "run_async",
]

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click

from mcp_device_auth.config import AppConfig, OIDCConfig, get_system_log_path, load_config_strict
from mcp_device_auth.exceptions import ConfigurationError
from mcp_device_auth.telemetry.system import configure_system_logger_file, set_console_level

T = TypeVar("T")


class CommandError(click.ClickException):
    """ClickException that exits with a specific code.

    Used to carry the exit codes defined on mcp_device_auth.exceptions
    through click's error handling.
    """

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion from a synchronous click command."""
    return asyncio.run(coro)


def load_auth_config_or_exit(config_path: Path) -> tuple[AppConfig, OIDCConfig]:
    """Load configuration with an auth section, exiting on failure.

    Also applies the logging settings: the system log file handler and,
    unless --debug was given, the configured console level.

    Args:
        config_path: Path to config.json.

    Returns:
        Tuple of (AppConfig, OIDCConfig).

    Raises:
        CommandError: If config not found, invalid or lacks auth (exit 16).
    """
    try:
        config = load_config_strict(config_path)
    except ConfigurationError as e:
        raise CommandError(str(e), exit_code=e.exit_code) from e

    assert config.auth is not None  # load_config_strict guarantees this

    configure_system_logger_file(get_system_log_path(config))
    ctx = click.get_current_context(silent=True)
    if ctx is None or not ctx.find_root().params.get("debug"):
        set_console_level(config.logging.log_level)

    return config, config.auth
