"""Security module: credential storage and authentication.

This module provides:
- Keychain-backed credential storage (credential_store.py)
- Keyring availability checks (keyring_utils.py)
- OAuth device flow, token lifecycle and scope gating (security/auth/)
"""

from mcp_device_auth.security.credential_store import (
    CredentialKey,
    KeychainOperationResult,
    SecureCredentialStore,
)
from mcp_device_auth.security.keyring_utils import (
    get_storage_info,
    is_keyring_available,
)
from mcp_device_auth.security.auth import (
    AuthorizationPoller,
    AuthorizationServerError,
    DeviceFlowDeniedError,
    DeviceFlowError,
    DeviceFlowExpiredError,
    DeviceGrantInitiator,
    DeviceGrantSession,
    GateDecision,
    OperationGate,
    RuntimeCredentials,
    ScopeAuthorizer,
    ScopeRequirement,
    TokenLifecycleManager,
    TokenRecord,
    run_device_flow,
)

__all__ = [
    # Credential storage
    "CredentialKey",
    "KeychainOperationResult",
    "SecureCredentialStore",
    "get_storage_info",
    "is_keyring_available",
    # Device flow
    "DeviceGrantInitiator",
    "DeviceGrantSession",
    "AuthorizationPoller",
    "DeviceFlowError",
    "DeviceFlowExpiredError",
    "DeviceFlowDeniedError",
    "AuthorizationServerError",
    "run_device_flow",
    # Token lifecycle
    "TokenRecord",
    "TokenLifecycleManager",
    "RuntimeCredentials",
    # Scopes
    "ScopeAuthorizer",
    "ScopeRequirement",
    "OperationGate",
    "GateDecision",
]
