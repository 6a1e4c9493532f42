"""Logging helpers shared by the credential components.

Keeps secrets out of log output and gives transport failures a stable
category for filtering.
"""

from __future__ import annotations

__all__ = [
    "categorize_error",
    "error_details",
    "mask_secret",
]

from typing import Any

import httpx


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Mask a secret for display, keeping only a short prefix.

    Args:
        value: Secret value (token, refresh token, code).
        visible: Number of leading characters to keep.

    Returns:
        Masked string such as "eyJh…(812 chars)", or "<none>".

    Example:
        >>> mask_secret("abcdefghijkl")
        'abcd…(12 chars)'
    """
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}…({len(value)} chars)"


def categorize_error(error: Exception) -> str:
    """Categorize exception for filtering and alerting.

    Categories:
        - timeout: httpx or builtin timeouts
        - network: Connection-level failures
        - http: Other httpx errors
        - keychain: keyring backend failures
        - serialization: JSON/data decoding errors
        - unknown: Unrecognized error types
    """
    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return "timeout"
    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return "network"
    if isinstance(error, httpx.HTTPError):
        return "http"

    module = type(error).__module__ or ""
    if module.startswith("keyring"):
        return "keychain"

    if isinstance(error, ValueError):
        return "serialization"

    return "unknown"


def error_details(error: Exception) -> dict[str, Any]:
    """Build the standard error fields for a structured log entry."""
    return {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "error_category": categorize_error(error),
    }
