"""Token endpoint polling for the device authorization grant.

Polls until the session resolves, following RFC 8628 §3.5:

    authorization_pending -> keep polling at the same interval
    slow_down             -> keep polling, interval += 5s from now on
    expired_token         -> EXPIRED (DeviceFlowExpiredError)
    access_denied         -> DENIED  (DeviceFlowDeniedError)
    anything else         -> FAILED  (DeviceFlowError)

The first request is sent immediately and a wait follows every pending
answer. The loop also stops locally (EXPIRED) once the next wait would
run past the session's expires_in, so it never outlives the device code.

Progress is reported as PollProgress values through an optional
callback. Nothing here writes to the terminal.
"""

from __future__ import annotations

__all__ = [
    "AuthorizationPoller",
    "DeviceFlowDeniedError",
    "DeviceFlowExpiredError",
    "PollProgress",
    "PollState",
]

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from mcp_device_auth.constants import (
    DEVICE_CODE_GRANT_TYPE,
    OAUTH_CLIENT_TIMEOUT_SECONDS,
    SLOW_DOWN_INCREMENT_SECONDS,
)
from mcp_device_auth.security.auth.device_flow import (
    AuthorizationServerError,
    DeviceFlowError,
    DeviceGrantSession,
)
from mcp_device_auth.security.auth.token_record import TokenRecord, parse_token_response
from mcp_device_auth.telemetry.system.system_logger import get_system_logger
from mcp_device_auth.utils.logging.logging_helpers import error_details

if TYPE_CHECKING:
    from mcp_device_auth.config import OIDCConfig
    from mcp_device_auth.security.credential_store import SecureCredentialStore

_logger = get_system_logger("device_flow")


class PollState(str, Enum):
    """State of the device-code polling state machine."""

    POLLING = "polling"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PollState.POLLING


@dataclass(frozen=True, slots=True)
class PollProgress:
    """Snapshot of the poll loop, passed to the progress callback.

    Attributes:
        state: Current state (POLLING until terminal).
        attempt: Number of token requests sent so far.
        interval_seconds: Wait used before the next attempt.
        waits: Number of waits completed so far.
        elapsed_seconds: Time since polling started.
    """

    state: PollState
    attempt: int
    interval_seconds: float
    waits: int
    elapsed_seconds: float


class DeviceFlowExpiredError(DeviceFlowError):
    """Device code expired before user authenticated."""

    def __init__(self, message: str) -> None:
        super().__init__(message, state=PollState.EXPIRED)


class DeviceFlowDeniedError(DeviceFlowError):
    """User denied the authorization request."""

    def __init__(self, message: str) -> None:
        super().__init__(message, state=PollState.DENIED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthorizationPoller:
    """Polls the token endpoint until a device grant session resolves.

    Usage:
        async with AuthorizationPoller(oidc_config, store) as poller:
            record = await poller.poll(session, requested_scopes)
    """

    def __init__(
        self,
        config: OIDCConfig,
        store: SecureCredentialStore,
        http_client: httpx.AsyncClient | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        on_progress: Callable[[PollProgress], None] | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            config: OIDC configuration (token endpoint, client_id).
            store: Keychain store the issued credential is written to.
            http_client: Optional httpx client (for testing).
            sleep: Coroutine used to wait between attempts.
            clock: UTC wall clock used to compute the token expiry.
            monotonic: Clock used for the local session deadline.
            on_progress: Called with a PollProgress after every attempt.
        """
        self._config = config
        self._store = store
        self._client = http_client or httpx.AsyncClient(timeout=OAUTH_CLIENT_TIMEOUT_SECONDS)
        self._owns_client = http_client is None
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic
        self._on_progress = on_progress

    async def __aenter__(self) -> AuthorizationPoller:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def poll(self, session: DeviceGrantSession, requested_scopes: Iterable[str] = ()) -> TokenRecord:
        """Poll until the user completes (or abandons) authorization.

        Args:
            session: Session from DeviceGrantInitiator.initiate().
            requested_scopes: Scopes recorded if the token response
                does not list the granted ones.

        Returns:
            The issued TokenRecord, already written to the keychain.

        Raises:
            DeviceFlowExpiredError: Device code expired (server or local deadline).
            DeviceFlowDeniedError: User denied the authorization request.
            DeviceFlowError: Any other failure (state FAILED).
        """
        requested = frozenset(requested_scopes)
        interval = session.interval_seconds
        start = self._monotonic()
        attempt = 0
        waits = 0

        def report(state: PollState) -> None:
            if self._on_progress is not None:
                self._on_progress(
                    PollProgress(
                        state=state,
                        attempt=attempt,
                        interval_seconds=interval,
                        waits=waits,
                        elapsed_seconds=self._monotonic() - start,
                    )
                )

        def fail(error: DeviceFlowError) -> DeviceFlowError:
            state = error.state or PollState.FAILED
            error.state = state
            _logger.warning(
                {
                    "event": f"device_flow_{state.value}",
                    "message": str(error),
                    "attempt": attempt,
                    "waits": waits,
                }
            )
            report(state)
            return error

        while True:
            attempt += 1
            try:
                response = await self._client.post(
                    self._config.token_url,
                    data={
                        "grant_type": DEVICE_CODE_GRANT_TYPE,
                        "device_code": session.device_code,
                        "client_id": self._config.client_id,
                    },
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                _logger.debug({"event": "device_flow_transport_error", **error_details(e)})
                raise fail(DeviceFlowError(f"HTTP error polling for token: {e}")) from e

            try:
                data = response.json()
            except ValueError as e:
                raise fail(
                    DeviceFlowError(f"Token endpoint returned a non-JSON response (HTTP {response.status_code})")
                ) from e
            if not isinstance(data, dict):
                raise fail(DeviceFlowError("Token endpoint returned an unexpected JSON document"))

            error = data.get("error")

            if not error:
                if response.status_code != 200:
                    raise fail(
                        DeviceFlowError(f"Token request failed with HTTP {response.status_code}")
                    )
                return self._complete(data, requested, report)

            if error == "authorization_pending":
                pass

            elif error == "slow_down":
                interval += SLOW_DOWN_INCREMENT_SECONDS
                _logger.debug(
                    {
                        "event": "device_flow_slow_down",
                        "message": f"Server asked to slow down, polling every {interval:g}s",
                    }
                )

            elif error == "expired_token":
                raise fail(DeviceFlowExpiredError("Device code expired. Please run 'auth login' again."))

            elif error == "access_denied":
                raise fail(DeviceFlowDeniedError("Authorization was denied by user."))

            else:
                raise fail(AuthorizationServerError(str(error), data.get("error_description")))

            # Still pending: stop locally rather than wait past the session lifetime
            elapsed = self._monotonic() - start
            if elapsed + interval >= session.expires_in_seconds:
                raise fail(
                    DeviceFlowExpiredError(
                        f"Authentication timed out after {session.expires_in_seconds:g} seconds. "
                        "Please run 'auth login' again."
                    )
                )

            report(PollState.POLLING)
            await self._sleep(interval)
            waits += 1

    def _complete(
        self,
        data: dict[str, Any],
        requested: frozenset[str],
        report: Callable[[PollState], None],
    ) -> TokenRecord:
        try:
            record = parse_token_response(data, now=self._clock(), requested_scopes=requested)
        except ValueError as e:
            # TenantResolutionError is a ValueError too
            _logger.warning({"event": "device_flow_failed", "message": f"Unusable token response: {e}"})
            report(PollState.FAILED)
            raise DeviceFlowError(f"Unusable token response: {e}", state=PollState.FAILED) from e

        if not self._store.set_many(record.to_entries()):
            _logger.error(
                {
                    "event": "credential_persist_failed",
                    "message": "Authorization succeeded but the credential could not be saved to the keychain",
                }
            )

        _logger.info(
            {
                "event": "device_flow_succeeded",
                "message": f"Authorized for tenant {record.tenant}",
                "tenant": record.tenant,
                "expires_at": record.expires_at.isoformat(),
                "granted_scopes": sorted(record.granted_scopes),
            }
        )
        report(PollState.SUCCEEDED)
        return record
