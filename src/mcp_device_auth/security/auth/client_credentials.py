"""OAuth Client Credentials grant (RFC 6749 §4.4).

For setups that cannot use the device flow (e.g. private cloud tenants
without a browser-reachable device activation page). The client
authenticates with its own secret instead of a user approving a code.

The issued token is stored in the same keychain items as a device-flow
credential, so TokenLifecycleManager and OperationGate consume it
unchanged. The tenant is the configured domain: client-credentials
tokens need not carry a management API audience.

The client secret is only ever sent to the token endpoint. It is not
stored, logged or kept on the returned record.
"""

from __future__ import annotations

__all__ = [
    "ClientCredentialsError",
    "ClientCredentialsGrant",
]

from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import httpx

from mcp_device_auth.constants import CLIENT_CREDENTIALS_GRANT_TYPE, OAUTH_CLIENT_TIMEOUT_SECONDS
from mcp_device_auth.exceptions import AuthenticationError
from mcp_device_auth.security.auth.token_record import TokenRecord, parse_token_response
from mcp_device_auth.telemetry.system.system_logger import get_system_logger
from mcp_device_auth.utils.logging.logging_helpers import error_details

if TYPE_CHECKING:
    from mcp_device_auth.config import OIDCConfig
    from mcp_device_auth.security.credential_store import SecureCredentialStore

_logger = get_system_logger("client_credentials")


class ClientCredentialsError(AuthenticationError):
    """The token endpoint did not issue a client-credentials token.

    Attributes:
        error: OAuth error code (e.g. "access_denied"), if the server sent one.
    """

    def __init__(self, message: str, *, error: str | None = None) -> None:
        super().__init__(message)
        self.error = error


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClientCredentialsGrant:
    """Obtains and stores a token using the client's own secret.

    Usage:
        async with ClientCredentialsGrant(oidc_config, store) as grant:
            record = await grant.request(client_secret)
    """

    def __init__(
        self,
        config: OIDCConfig,
        store: SecureCredentialStore,
        http_client: httpx.AsyncClient | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._client = http_client or httpx.AsyncClient(timeout=OAUTH_CLIENT_TIMEOUT_SECONDS)
        self._owns_client = http_client is None
        self._clock = clock

    async def __aenter__(self) -> ClientCredentialsGrant:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def tenant(self) -> str:
        """Host of the configured domain."""
        return urlparse(self._config.issuer).netloc

    async def request(self, client_secret: str) -> TokenRecord:
        """Exchange the client secret for an access token and store it.

        A refresh token left by an earlier device-flow login is removed:
        the stored record always describes the credential just issued.

        Args:
            client_secret: Secret of the configured client.

        Returns:
            The issued record. Use SecureCredentialStore.get() to tell
            whether the keychain accepted it.

        Raises:
            ClientCredentialsError: Transport failure, OAuth error or an
                unusable token response.
        """
        if not client_secret:
            raise ClientCredentialsError("A client secret is required for the client credentials grant")

        _logger.info(
            {
                "event": "client_credentials_started",
                "message": "Initiating client credentials flow authentication",
                "audience": self._config.audience,
            }
        )

        try:
            response = await self._client.post(
                self._config.token_url,
                data={
                    "grant_type": CLIENT_CREDENTIALS_GRANT_TYPE,
                    "client_id": self._config.client_id,
                    "client_secret": client_secret,
                    "audience": self._config.audience,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            _logger.error(
                {
                    "event": "client_credentials_failed",
                    "message": f"HTTP error requesting client credentials token: {e}",
                    **error_details(e),
                }
            )
            raise ClientCredentialsError(f"HTTP error requesting token: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ClientCredentialsError(
                f"Token request returned a non-JSON response (HTTP {response.status_code})"
            ) from e
        if not isinstance(data, dict):
            raise ClientCredentialsError("Token request returned an unexpected JSON document")

        error = data.get("error")
        if error or not response.is_success:
            description = data.get("error_description") or error or f"HTTP {response.status_code}"
            _logger.error(
                {
                    "event": "client_credentials_failed",
                    "message": f"Authorization server rejected client credentials: {description}",
                    "error": error,
                    "status_code": response.status_code,
                }
            )
            raise ClientCredentialsError(
                f"Client credentials authentication failed: {description}",
                error=str(error) if error else None,
            )

        try:
            record = parse_token_response(data, now=self._clock(), requested_scopes=(), tenant=self.tenant)
        except ValueError as e:
            raise ClientCredentialsError(f"Unusable token response: {e}") from e

        if not self._store.set_many(record.to_entries()):
            _logger.error(
                {
                    "event": "credential_persist_failed",
                    "message": "Client credentials token could not be saved to the keychain",
                }
            )

        _logger.info(
            {
                "event": "client_credentials_succeeded",
                "message": f"Authorized for tenant {record.tenant} using client credentials",
                "tenant": record.tenant,
                "expires_at": record.expires_at.isoformat(),
                "granted_scopes": sorted(record.granted_scopes),
            }
        )
        return record
