"""Custom exceptions for mcp-device-auth.

This module contains the exceptions shared across the package.
Device-flow specific errors live in security.auth.device_flow and
security.auth.poller, next to the code that raises them.

Expected runtime conditions (expired token, missing refresh token,
keychain unavailable, missing scopes) are NOT exceptions: the lifecycle
components return None/False and let the caller word the message.

Exceptions carry an exit code so the CLI can terminate consistently:
    - CredentialError (exit 1): Base class
    - AuthenticationError (exit 13): Credential could not be obtained
    - ConfigurationError (exit 16): Config missing or invalid

Usage:
    from mcp_device_auth.exceptions import AuthenticationError, ConfigurationError
"""

from __future__ import annotations

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "CredentialError",
]


class CredentialError(Exception):
    """Base exception for mcp-device-auth failures.

    Attributes:
        exit_code: Process exit code used by the CLI.
        failure_type: Category string for structured logging.
    """

    exit_code: int = 1
    failure_type: str = "unknown"


class AuthenticationError(CredentialError):
    """Authentication failed - no usable credential could be obtained.

    Raised when:
    - The authorization server rejects the device code request
    - The device flow is denied, expires or fails
    - The operator must re-run interactive setup

    Exit code 13 indicates authentication failure.
    """

    exit_code = 13
    failure_type = "authentication_failure"


class ConfigurationError(CredentialError):
    """Configuration is invalid or incomplete.

    Raised when:
    - Config file does not exist (not initialized)
    - Config file exists but the auth section is missing
    - Config file contains invalid JSON
    - Config file fails Pydantic validation

    Exit code 16 indicates configuration failure.
    """

    exit_code = 16
    failure_type = "configuration_failure"
