"""Shared utilities for mcp-device-auth."""
