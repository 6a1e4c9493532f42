"""Application configuration for mcp-device-auth.

Defines configuration models for the authorization server and logging.
User creates config via `mcp-device-auth init`. Config is stored at the
OS-appropriate location (via click.get_app_dir).

Example usage:
    # Load from config file, raising if missing or invalid
    config = load_config_strict()

    # Save new configuration
    save_config(config)
"""

from __future__ import annotations

__all__ = [
    "AppConfig",
    "LoggingConfig",
    "OIDCConfig",
    "get_config_path",
    "get_system_log_path",
    "load_config",
    "load_config_strict",
    "save_config",
]

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from mcp_device_auth.constants import APP_NAME, DEFAULT_LOG_DIR, OFFLINE_ACCESS_SCOPE
from mcp_device_auth.utils.file_helpers import (
    get_app_dir,
    load_validated_json,
    require_file_exists,
    set_secure_permissions,
)

_logger = logging.getLogger(f"{APP_NAME}.config")


# =============================================================================
# Authentication Configuration
# =============================================================================


class OIDCConfig(BaseModel):
    """Authorization server configuration for the device grant.

    Attributes:
        domain: Authorization server host (e.g., "your-tenant.auth0.com")
            or base URL. "https://" is assumed when no scheme is given.
        client_id: Public client ID registered for the device grant.
        audience: API audience the access token is requested for.
        scopes: Scopes requested at login (offline_access enables refresh).
    """

    domain: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    audience: str = Field(min_length=1)
    scopes: list[str] = Field(
        default=[OFFLINE_ACCESS_SCOPE],
        description="OAuth scopes to request at login",
    )

    @field_validator("domain")
    @classmethod
    def _strip_domain(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value or any(ch.isspace() for ch in value):
            raise ValueError("domain must be a host name or URL without whitespace")
        return value

    @property
    def issuer(self) -> str:
        """Base URL of the authorization server."""
        if self.domain.startswith(("http://", "https://")):
            return self.domain
        return f"https://{self.domain}"

    @property
    def device_authorization_url(self) -> str:
        """Device authorization endpoint (RFC 8628 §3.1)."""
        return f"{self.issuer}/oauth/device/code"

    @property
    def token_url(self) -> str:
        """Token endpoint used for device-code polling and refresh."""
        return f"{self.issuer}/oauth/token"

    @property
    def revocation_url(self) -> str:
        """Token revocation endpoint (RFC 7009), used on logout."""
        return f"{self.issuer}/oauth/revoke"


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        log_dir: Directory for system.jsonl (WARNING and above).
        log_level: Console level for operational messages.
    """

    log_dir: str = Field(default=DEFAULT_LOG_DIR, min_length=1)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Top-level application configuration (config.json).

    Attributes:
        auth: Authorization server settings. None until `init` has run.
        logging: Logging settings.
    """

    auth: OIDCConfig | None = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "ignore"}  # Ignore unknown fields for forward compat


def get_config_path() -> Path:
    """Get the full path to the config file.

    Returns:
        Path to config.json in the application directory.
    """
    return get_app_dir() / "config.json"


def get_system_log_path(config: AppConfig) -> Path:
    """Get full path to the system log file.

    Args:
        config: Application configuration.

    Returns:
        Path: <log_dir>/system.jsonl
    """
    return Path(config.logging.log_dir).expanduser() / "system.jsonl"


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration, falling back to defaults on any problem.

    Used where a missing or broken config must not stop the command
    (e.g., `auth status`, `config path`).

    Args:
        config_path: Optional override for the config file location.

    Returns:
        AppConfig: Loaded or default configuration.
    """
    path = config_path or get_config_path()

    if not path.exists():
        return AppConfig()

    try:
        return load_validated_json(path, AppConfig, file_type="config")
    except ValueError as e:
        _logger.warning(
            {
                "event": "config_load_failed",
                "message": f"Ignoring unusable config, using defaults: {e}",
                "error_type": type(e).__name__,
                "details": {"config_path": str(path)},
            }
        )
        return AppConfig()


def load_config_strict(config_path: Path | None = None) -> AppConfig:
    """Load configuration, raising on any error.

    Args:
        config_path: Optional override for the config file location.

    Returns:
        AppConfig: Validated configuration with an auth section.

    Raises:
        ConfigurationError: If config is missing, invalid, or lacks auth.
    """
    from mcp_device_auth.exceptions import ConfigurationError

    path = config_path or get_config_path()

    try:
        require_file_exists(path, file_type="configuration")
        config = load_validated_json(path, AppConfig, file_type="config")
    except (FileNotFoundError, ValueError) as e:
        raise ConfigurationError(str(e)) from e

    if config.auth is None:
        raise ConfigurationError(
            f"Auth not configured in {path}.\n" f"Run '{APP_NAME} init --force' to reconfigure."
        )

    return config


def save_config(config: AppConfig, config_path: Path | None = None) -> Path:
    """Save configuration to file.

    Creates the config directory if it doesn't exist.
    Sets secure file permissions (0600).

    Args:
        config: Configuration to save.
        config_path: Optional override for the config file location.

    Returns:
        Path the configuration was written to.

    Raises:
        OSError: If unable to write config file.
    """
    path = config_path or get_config_path()

    path.parent.mkdir(parents=True, exist_ok=True)
    set_secure_permissions(path.parent, is_directory=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(config.model_dump(), f, indent=2)
        f.write("\n")

    set_secure_permissions(path)
    return path
