"""Authentication for the management API credential.

This module provides:
- OAuth Device Flow for CLI authentication (device_flow.py, poller.py)
- Client credentials grant for clients holding a secret (client_credentials.py)
- Stored credential model and token response parsing (token_record.py)
- Expiry-aware token access and refresh (token_lifecycle.py)
- Scope requirements and the per-operation gate (scopes.py, gate.py)
"""

from mcp_device_auth.security.auth.client_credentials import (
    ClientCredentialsError,
    ClientCredentialsGrant,
)
from mcp_device_auth.security.auth.device_flow import (
    AuthorizationServerError,
    DeviceFlowError,
    DeviceGrantInitiator,
    DeviceGrantSession,
)
from mcp_device_auth.security.auth.gate import (
    GateDecision,
    GateOutcome,
    OperationGate,
)
from mcp_device_auth.security.auth.login import (
    LoginResult,
    login_scopes,
    run_client_credentials_flow,
    run_device_flow,
)
from mcp_device_auth.security.auth.poller import (
    AuthorizationPoller,
    DeviceFlowDeniedError,
    DeviceFlowExpiredError,
    PollProgress,
    PollState,
)
from mcp_device_auth.security.auth.scopes import (
    ScopeAuthorizer,
    ScopeRequirement,
    collect_scopes,
)
from mcp_device_auth.security.auth.token_lifecycle import (
    RuntimeCredentials,
    TokenLifecycleManager,
)
from mcp_device_auth.security.auth.token_record import (
    TenantResolutionError,
    TokenRecord,
    parse_token_response,
    tenant_from_access_token,
)

__all__ = [
    # Device flow
    "DeviceGrantInitiator",
    "DeviceGrantSession",
    "AuthorizationPoller",
    "PollProgress",
    "PollState",
    "DeviceFlowError",
    "DeviceFlowExpiredError",
    "DeviceFlowDeniedError",
    "AuthorizationServerError",
    "LoginResult",
    "login_scopes",
    "run_device_flow",
    # Client credentials
    "ClientCredentialsGrant",
    "ClientCredentialsError",
    "run_client_credentials_flow",
    # Token record
    "TokenRecord",
    "TenantResolutionError",
    "parse_token_response",
    "tenant_from_access_token",
    # Token lifecycle
    "TokenLifecycleManager",
    "RuntimeCredentials",
    # Scopes
    "ScopeAuthorizer",
    "ScopeRequirement",
    "collect_scopes",
    "OperationGate",
    "GateDecision",
    "GateOutcome",
]
