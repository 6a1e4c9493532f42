"""Shared keyring utility functions.

Provides the availability check and backend description used by the
credential store and by `auth status`.
"""

from __future__ import annotations

__all__ = [
    "describe_backend",
    "get_storage_info",
    "is_keyring_available",
]

from typing import Any

import keyring
from keyring.backend import KeyringBackend
from keyring.backends.fail import Keyring as FailKeyring
from keyring.errors import KeyringError

from mcp_device_auth.constants import APP_NAME, KEYRING_SERVICE_NAME
from mcp_device_auth.telemetry.system.system_logger import get_system_logger


def describe_backend(backend: KeyringBackend | None = None) -> str:
    """Human-readable name of a keyring backend (e.g. "macOS Keyring")."""
    backend = backend or keyring.get_keyring()
    name = getattr(backend, "name", None)
    if isinstance(name, str) and name:
        return name
    return type(backend).__name__


def is_keyring_available(
    backend: KeyringBackend | None = None,
    test_service_suffix: str = "test",
) -> bool:
    """Check if keyring backend is available and functional.

    Performs a test write/read/delete cycle to verify the keyring
    is working correctly.

    Args:
        backend: Backend to check. Defaults to the active keyring.
        test_service_suffix: Suffix for the test service name.
            Default "test" creates "{APP_NAME}-test" service.

    Returns:
        True if keyring can store/retrieve secrets.
    """
    logger = get_system_logger("keychain")

    try:
        backend = backend or keyring.get_keyring()

        # Check if we have a real backend (not the fail backend)
        if isinstance(backend, FailKeyring):
            logger.debug(
                {
                    "event": "keyring_unavailable",
                    "reason": "fail_backend",
                    "message": "Keyring using FailKeyring backend (no usable backend found)",
                }
            )
            return False

        test_service = f"{APP_NAME}-{test_service_suffix}"
        test_user = "availability-check"
        test_value = "test"

        backend.set_password(test_service, test_user, test_value)
        result = backend.get_password(test_service, test_user)
        backend.delete_password(test_service, test_user)

        return result == test_value

    except KeyringError as e:
        logger.debug(
            {
                "event": "keyring_unavailable",
                "reason": "keyring_error",
                "error": str(e),
                "error_type": type(e).__name__,
            }
        )
        return False
    except Exception as e:
        # Unexpected errors (e.g., DBus errors on Linux, permission issues)
        # Log and return False - keyring availability check should never crash
        logger.debug(
            {
                "event": "keyring_unavailable",
                "reason": "unexpected_error",
                "error": str(e),
                "error_type": type(e).__name__,
            }
        )
        return False


def get_storage_info(backend: KeyringBackend | None = None) -> dict[str, Any]:
    """Get information about the credential storage backend.

    Returns:
        Dict with backend name, service name and availability.
    """
    return {
        "backend": describe_backend(backend),
        "service": KEYRING_SERVICE_NAME,
        "available": is_keyring_available(backend),
    }
