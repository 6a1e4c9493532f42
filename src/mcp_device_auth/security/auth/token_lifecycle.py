"""Expiry-aware access to the stored credential.

The TokenLifecycleManager decides, on every credential access, whether
the stored token is usable as-is, must be refreshed, or is gone:

    get_valid_token()
        not expired (incl. 5 min buffer)  -> stored access token
        expired, refresh succeeds         -> new access token
        expired, refresh fails            -> stored access token (may be stale)
        nothing stored                    -> None (run `auth login`)

Refresh is all-or-nothing: any failure leaves the keychain untouched,
and a success rewrites access token, expiry and (if rotated) refresh
token with one SecureCredentialStore.set_many() call.

Expected conditions (no token, no refresh token, keychain unavailable,
refresh rejected) are reported as None/False, never raised.
"""

from __future__ import annotations

__all__ = [
    "RuntimeCredentials",
    "TokenLifecycleManager",
]

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import httpx

from mcp_device_auth.constants import OAUTH_CLIENT_TIMEOUT_SECONDS, TOKEN_EXPIRY_BUFFER_SECONDS
from mcp_device_auth.security.auth.token_record import TokenRecord, parse_token_response
from mcp_device_auth.security.credential_store import CredentialKey, KeychainOperationResult
from mcp_device_auth.telemetry.system.system_logger import get_system_logger
from mcp_device_auth.utils.logging.logging_helpers import error_details, mask_secret

if TYPE_CHECKING:
    from mcp_device_auth.config import OIDCConfig
    from mcp_device_auth.security.credential_store import SecureCredentialStore

_logger = get_system_logger("token_lifecycle")


@dataclass(frozen=True, slots=True)
class RuntimeCredentials:
    """Credential handed to the code that calls the management API.

    Passed explicitly (see OperationGate) instead of through process
    environment variables.
    """

    access_token: str
    tenant: str | None
    client_id: str
    expires_at: datetime
    granted_scopes: frozenset[str]

    @classmethod
    def from_record(cls, record: TokenRecord, client_id: str) -> RuntimeCredentials:
        return cls(
            access_token=record.access_token,
            tenant=record.tenant,
            client_id=client_id,
            expires_at=record.expires_at,
            granted_scopes=record.granted_scopes,
        )

    def __repr__(self) -> str:
        return (
            f"RuntimeCredentials(access_token={mask_secret(self.access_token)!r}, "
            f"tenant={self.tenant!r}, client_id={self.client_id!r}, "
            f"expires_at={self.expires_at.isoformat()!r})"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenLifecycleManager:
    """Loads, checks and refreshes the keychain credential.

    Usage:
        async with TokenLifecycleManager(oidc_config, store) as tokens:
            token = await tokens.get_valid_token()
            if token is None:
                ...  # tell the user to run `auth login`
    """

    def __init__(
        self,
        config: OIDCConfig,
        store: SecureCredentialStore,
        http_client: httpx.AsyncClient | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the manager.

        Args:
            config: OIDC configuration (token/revocation endpoints, client_id).
            store: Keychain store holding the credential.
            http_client: Optional httpx client (for testing).
            clock: UTC wall clock.
        """
        self._config = config
        self._store = store
        self._client = http_client or httpx.AsyncClient(timeout=OAUTH_CLIENT_TIMEOUT_SECONDS)
        self._owns_client = http_client is None
        self._clock = clock
        self._record: TokenRecord | None = None
        self._credentials: RuntimeCredentials | None = None
        # Refreshed record the keychain refused to store
        self._unpersisted: TokenRecord | None = None
        self._refresh_lock = asyncio.Lock()

    async def __aenter__(self) -> TokenLifecycleManager:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def credentials(self) -> RuntimeCredentials | None:
        """Credential from the last load or refresh, if any."""
        return self._credentials

    def load_record(self) -> TokenRecord | None:
        """Read the credential from the keychain.

        A refreshed record that could not be saved stays in use while the
        keychain still holds an older credential. It is dropped once the
        keychain holds a newer one or none at all (logout elsewhere).

        Returns:
            The current record, or None if absent or incoherent (e.g. a
            token without a parseable expiry).
        """
        entries = self._store.get_many()
        record = TokenRecord.from_entries(entries)

        if record is None and entries.get(CredentialKey.TOKEN):
            _logger.warning(
                {
                    "event": "credential_incoherent",
                    "message": "Stored access token has no valid expiry, treating as not logged in",
                }
            )

        if self._unpersisted is not None:
            if record is not None and record.expires_at < self._unpersisted.expires_at:
                record = self._unpersisted
            else:
                self._unpersisted = None

        self._set_current(record)
        return record

    def is_expired(self, buffer_seconds: float = TOKEN_EXPIRY_BUFFER_SECONDS) -> bool:
        """Check whether the stored token needs replacing.

        Args:
            buffer_seconds: Treat the token as expired this long before
                it actually expires.

        Returns:
            True if nothing is stored or now + buffer >= expires_at.
        """
        record = self.load_record()
        if record is None:
            return True

        expired = record.is_expired(self._clock(), buffer_seconds)
        if expired:
            _logger.debug(
                {
                    "event": "token_expiring",
                    "message": f"Token is expired or will expire soon. Expires at: {record.expires_at.isoformat()}",
                }
            )
        return expired

    def granted_scopes(self) -> frozenset[str]:
        """Scopes recorded when the current credential was issued or refreshed."""
        record = self._record or self.load_record()
        return record.granted_scopes if record is not None else frozenset()

    async def refresh(self) -> TokenRecord | None:
        """Exchange the stored refresh token for a new access token.

        Returns:
            The new record (already written to the keychain), or None if
            there is no refresh token or the exchange failed. On None the
            stored credential is left exactly as it was.
        """
        current = self.load_record()
        refresh_token = current.refresh_token if current else self._store.get(CredentialKey.REFRESH_TOKEN)
        if not refresh_token:
            _logger.debug({"event": "token_refresh_skipped", "message": "No refresh token found in keychain"})
            return None

        _logger.debug({"event": "token_refresh_started", "message": "Attempting to refresh access token"})

        try:
            response = await self._client.post(
                self._config.token_url,
                data={
                    "grant_type": "refresh_token",
                    "client_id": self._config.client_id,
                    "refresh_token": refresh_token,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            _logger.warning(
                {
                    "event": "token_refresh_failed",
                    "message": f"HTTP error during token refresh: {e}",
                    **error_details(e),
                }
            )
            return None

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            _logger.warning(
                {
                    "event": "token_refresh_failed",
                    "message": f"Token refresh returned a non-JSON response (HTTP {response.status_code})",
                    "status_code": response.status_code,
                }
            )
            return None

        error = data.get("error")
        if error or response.status_code != 200:
            if error in ("invalid_grant", "expired_token"):
                message = "Refresh token has expired or was revoked. Please run 'auth login' to re-authenticate."
            else:
                message = f"Token refresh failed: {data.get('error_description') or error or response.status_code}"
            _logger.warning(
                {
                    "event": "token_refresh_failed",
                    "message": message,
                    "error": error,
                    "status_code": response.status_code,
                }
            )
            return None

        now = self._clock()
        try:
            if current is not None:
                record = current.apply_refresh(data, now=now)
            else:
                record = parse_token_response(
                    data,
                    now=now,
                    requested_scopes=(self._store.get(CredentialKey.GRANTED_SCOPES) or "").split(),
                    previous_refresh_token=refresh_token,
                )
        except ValueError as e:
            _logger.warning({"event": "token_refresh_failed", "message": f"Unusable token response: {e}"})
            return None

        if self._store.set_many(record.to_entries()):
            self._unpersisted = None
        else:
            # The old refresh token may already be rotated out server-side, so
            # the new credential is still used for this process.
            self._unpersisted = record
            _logger.error(
                {
                    "event": "credential_persist_failed",
                    "message": "Refreshed token could not be saved to the keychain, using it for this session only",
                }
            )

        self._set_current(record)
        _logger.info(
            {
                "event": "token_refreshed",
                "message": "Successfully refreshed access token",
                "expires_at": record.expires_at.isoformat(),
                "refresh_token_rotated": record.refresh_token != refresh_token,
            }
        )
        return record

    async def get_valid_token(self) -> str | None:
        """Return an access token, refreshing it first if it is expiring.

        Concurrent callers in this process share one refresh.

        Returns:
            A fresh access token, the stored (possibly stale) token if
            refresh failed, or None if nothing is stored.
        """
        if not self.is_expired():
            assert self._record is not None
            return self._record.access_token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            if not self.is_expired():
                assert self._record is not None
                return self._record.access_token

            record = await self.refresh()
            if record is not None:
                return record.access_token

            token = self._record.access_token if self._record is not None else self._store.get(CredentialKey.TOKEN)
            if token:
                _logger.info(
                    {
                        "event": "token_refresh_fallback",
                        "message": "Token refresh failed, using existing token",
                    }
                )
            return token or None

    async def revoke(self) -> bool:
        """Revoke the stored refresh token at the authorization server.

        Best effort, used on logout.

        Returns:
            True if the server accepted the revocation.
        """
        if self._unpersisted is not None:
            refresh_token = self._unpersisted.refresh_token
        else:
            refresh_token = self._store.get(CredentialKey.REFRESH_TOKEN)
        if not refresh_token:
            return False

        try:
            response = await self._client.post(
                self._config.revocation_url,
                data={
                    "client_id": self._config.client_id,
                    "token": refresh_token,
                    "token_type_hint": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            _logger.warning(
                {
                    "event": "token_revoke_failed",
                    "message": f"HTTP error revoking refresh token: {e}",
                    **error_details(e),
                }
            )
            return False

        if response.status_code != 200:
            _logger.warning(
                {
                    "event": "token_revoke_failed",
                    "message": f"Refresh token revocation failed with HTTP {response.status_code}",
                    "status_code": response.status_code,
                }
            )
            return False

        _logger.info({"event": "token_revoked", "message": "Refresh token revoked"})
        return True

    def clear(self) -> list[KeychainOperationResult]:
        """Delete the credential from the keychain and forget it in memory."""
        results = self._store.clear_all()
        self._unpersisted = None
        self._set_current(None)
        return results

    def _set_current(self, record: TokenRecord | None) -> None:
        self._record = record
        self._credentials = (
            RuntimeCredentials.from_record(record, self._config.client_id) if record is not None else None
        )
