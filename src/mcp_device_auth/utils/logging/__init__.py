"""Logging utilities and helpers.

This package provides logging infrastructure for mcp-device-auth:
- iso_formatter: ISO 8601 timestamp formatting for JSONL logs
- logging_helpers: Secret masking and error categorization

Import directly from submodules to avoid circular imports:
    from mcp_device_auth.utils.logging.logging_helpers import mask_secret
"""

__all__: list[str] = []  # Direct submodule imports required (see docstring)
