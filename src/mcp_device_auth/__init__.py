"""mcp-device-auth: OAuth device-grant credentials for command-line tools.

Obtains an API credential through the OAuth 2.0 Device Authorization Grant,
keeps it in the OS keychain, refreshes it before it lapses and gates
privileged operations on the scopes the credential was issued with.
"""

__version__ = "0.3.0"
