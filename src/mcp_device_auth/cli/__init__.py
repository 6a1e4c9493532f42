"""Command-line interface for mcp-device-auth.

Provides commands for configuring the authorization server, logging in
with the device flow and inspecting or using the stored credential.
"""

from .main import cli, main

__all__ = ["cli", "main"]
