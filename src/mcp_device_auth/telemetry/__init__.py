"""Operational logging for mcp-device-auth."""
