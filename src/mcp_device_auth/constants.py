"""Application-wide constants for mcp-device-auth.

Constants that define application behavior.
For user-configurable settings per deployment, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    "DEFAULT_LOG_DIR",
    # Keychain
    "KEYRING_SERVICE_NAME",
    # OAuth device flow
    "OAUTH_CLIENT_TIMEOUT_SECONDS",
    "DEVICE_FLOW_POLL_INTERVAL_SECONDS",
    "SLOW_DOWN_INCREMENT_SECONDS",
    "DEVICE_CODE_GRANT_TYPE",
    "ALLOWED_BROWSER_SCHEMES",
    # OAuth client credentials
    "CLIENT_CREDENTIALS_GRANT_TYPE",
    "CLIENT_SECRET_ENV_VAR",
    # Token lifecycle
    "TOKEN_EXPIRY_BUFFER_SECONDS",
    "DEFAULT_TOKEN_LIFETIME_SECONDS",
    "MANAGEMENT_API_AUDIENCE_PATH",
    "OFFLINE_ACCESS_SCOPE",
]

from platformdirs import user_log_dir

# ============================================================================
# Application Identity
# ============================================================================

# Application name used for directory names, logger names, etc.
APP_NAME: str = "mcp-device-auth"

# Platform-specific log directory:
# - macOS: ~/Library/Logs/mcp-device-auth
# - Linux: ~/.local/state/mcp-device-auth/log
# - Windows: %LOCALAPPDATA%\mcp-device-auth\Logs
DEFAULT_LOG_DIR: str = user_log_dir(APP_NAME, appauthor=False)

# ============================================================================
# Keychain
# ============================================================================

# Fixed service identifier all credential entries are namespaced under.
# Shared with earlier releases so existing keychain entries keep working.
KEYRING_SERVICE_NAME: str = "auth0-mcp"

# ============================================================================
# OAuth Device Flow (RFC 8628)
# ============================================================================

# Timeout for OAuth HTTP requests (device code, token polling, refresh, revoke)
OAUTH_CLIENT_TIMEOUT_SECONDS: int = 30

# Default polling interval when the device code response omits "interval"
DEVICE_FLOW_POLL_INTERVAL_SECONDS: int = 5

# Added to the polling interval on every "slow_down" response (RFC 8628 §3.5)
SLOW_DOWN_INCREMENT_SECONDS: int = 5

DEVICE_CODE_GRANT_TYPE: str = "urn:ietf:params:oauth:grant-type:device_code"

# Only these schemes are ever handed to the platform URL handler
ALLOWED_BROWSER_SCHEMES: tuple[str, ...] = ("http", "https")

# ============================================================================
# OAuth Client Credentials
# ============================================================================

CLIENT_CREDENTIALS_GRANT_TYPE: str = "client_credentials"

# Environment variable `auth login --client-credentials` reads the secret from.
# The secret itself is never written to the keychain or config.json.
CLIENT_SECRET_ENV_VAR: str = "MCP_DEVICE_AUTH_CLIENT_SECRET"

# ============================================================================
# Token Lifecycle
# ============================================================================

# Refresh tokens 5 minutes before they actually expire
TOKEN_EXPIRY_BUFFER_SECONDS: int = 300

# Lifetime assumed when a token response omits "expires_in" (24h)
DEFAULT_TOKEN_LIFETIME_SECONDS: int = 86400

# Audience path identifying the management API; its host is the tenant
MANAGEMENT_API_AUDIENCE_PATH: str = "/api/v2/"

# Scope required for the authorization server to issue a refresh token
OFFLINE_ACCESS_SCOPE: str = "offline_access"
