"""Authorization gate in front of privileged operations.

The dispatch layer calls OperationGate.authorize() before every
privileged operation. The gate obtains a valid token (refreshing if
needed) and then checks the operation's required scopes against the
granted ones. The outcome is a GateDecision value, never an exception:

    allowed            token + RuntimeCredentials for the handler
    not_authenticated  nothing stored; user must run `auth login`
    missing_scopes     names the scopes the credential lacks
"""

from __future__ import annotations

__all__ = [
    "GateDecision",
    "GateOutcome",
    "OperationGate",
]

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from mcp_device_auth.constants import APP_NAME
from mcp_device_auth.security.auth.scopes import ScopeAuthorizer
from mcp_device_auth.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from mcp_device_auth.security.auth.scopes import ScopeRequirement
    from mcp_device_auth.security.auth.token_lifecycle import RuntimeCredentials, TokenLifecycleManager

_logger = get_system_logger("gate")


class GateOutcome(str, Enum):
    ALLOWED = "allowed"
    NOT_AUTHENTICATED = "not_authenticated"
    MISSING_SCOPES = "missing_scopes"


@dataclass(frozen=True, slots=True)
class GateDecision:
    """Result of OperationGate.authorize().

    Attributes:
        outcome: What the gate decided.
        operation: Operation the decision is for.
        message: User-facing explanation (empty when allowed).
        token: Access token to call the API with (allowed only).
        credentials: Runtime credential for the handler (allowed only,
            None if the stored credential could not be fully loaded).
        missing_scopes: Required scopes not granted, sorted.
    """

    outcome: GateOutcome
    operation: str
    message: str = ""
    token: str | None = None
    credentials: RuntimeCredentials | None = None
    missing_scopes: tuple[str, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.outcome is GateOutcome.ALLOWED

    def __repr__(self) -> str:
        return (
            f"GateDecision(outcome={self.outcome.value!r}, operation={self.operation!r}, "
            f"missing_scopes={self.missing_scopes!r})"
        )


class OperationGate:
    """Runs token validation and the scope check, in that order.

    Usage:
        gate = OperationGate(token_manager)
        decision = await gate.authorize(ScopeRequirement("list_clients", frozenset({"read:clients"})))
        if not decision.allowed:
            return error(decision.message)
        handler(decision.credentials)
    """

    def __init__(self, tokens: TokenLifecycleManager, authorizer: ScopeAuthorizer | None = None) -> None:
        self._tokens = tokens
        self._authorizer = authorizer or ScopeAuthorizer()

    async def authorize(self, requirement: ScopeRequirement) -> GateDecision:
        """Decide whether the operation may run with the current credential."""
        token = await self._tokens.get_valid_token()
        # A raw token with no usable record (e.g. no expiry) carries no scopes
        if token is None or self._tokens.credentials is None:
            _logger.info(
                {
                    "event": "operation_not_authenticated",
                    "message": f"No credential available for {requirement.operation}",
                    "operation": requirement.operation,
                }
            )
            return GateDecision(
                outcome=GateOutcome.NOT_AUTHENTICATED,
                operation=requirement.operation,
                message=f"Not authenticated. Run '{APP_NAME} auth login' to authenticate.",
            )

        granted = self._tokens.granted_scopes()
        if not self._authorizer.check(requirement.scopes, granted):
            missing = self._authorizer.missing(requirement.scopes, granted)
            _logger.warning(
                {
                    "event": "operation_scope_denied",
                    "message": f"Missing scopes for {requirement.operation}: {', '.join(missing)}",
                    "operation": requirement.operation,
                    "missing_scopes": list(missing),
                }
            )
            return GateDecision(
                outcome=GateOutcome.MISSING_SCOPES,
                operation=requirement.operation,
                message=(
                    f"Operation '{requirement.operation}' requires scopes not granted to the current "
                    f"credential: {', '.join(missing)}. Run '{APP_NAME} auth login' to request them."
                ),
                missing_scopes=missing,
            )

        return GateDecision(
            outcome=GateOutcome.ALLOWED,
            operation=requirement.operation,
            token=token,
            credentials=self._tokens.credentials,
        )
