"""Stored credential model and OAuth token response parsing.

A TokenRecord is the durable credential written to the keychain by the
device flow and rewritten by each successful refresh. It is stored as
separate keychain items (see security.credential_store) and loaded back
only when the items form a coherent record: an access token together
with a parseable expiry.
"""

from __future__ import annotations

__all__ = [
    "TenantResolutionError",
    "TokenRecord",
    "parse_token_response",
    "tenant_from_access_token",
]

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlparse

import jwt
from pydantic import BaseModel, ConfigDict, Field

from mcp_device_auth.constants import (
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    MANAGEMENT_API_AUDIENCE_PATH,
    TOKEN_EXPIRY_BUFFER_SECONDS,
)
from mcp_device_auth.security.credential_store import CredentialKey


class TenantResolutionError(ValueError):
    """The access token does not identify a tenant."""


class TokenRecord(BaseModel):
    """Credential issued by the device flow.

    Attributes:
        access_token: Bearer token for the management API.
        refresh_token: Token for obtaining new access tokens (None when
            offline_access was not granted).
        expires_at: UTC time the access token expires, computed once as
            issuance time + expires_in.
        tenant: Host of the management API audience the token was issued for.
        granted_scopes: Scopes the authorization server granted.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_at: datetime
    tenant: str | None = None
    granted_scopes: frozenset[str] = frozenset()

    def is_expired(self, now: datetime, buffer_seconds: float = TOKEN_EXPIRY_BUFFER_SECONDS) -> bool:
        """Check whether the token is expired or expires within the buffer.

        The exact boundary counts as expired.
        """
        return now + timedelta(seconds=buffer_seconds) >= self.expires_at

    def seconds_until_expiry(self, now: datetime) -> float:
        """Seconds until access token expires (negative if expired)."""
        return (self.expires_at - now).total_seconds()

    def apply_refresh(self, data: Mapping[str, Any], *, now: datetime) -> TokenRecord:
        """Build the record that replaces this one after a refresh.

        The tenant is kept. The refresh token is rotated only if the
        response carries a new one, and granted scopes change only if the
        response carries "scope".

        Raises:
            ValueError: If the response has no usable access_token/expires_in.
        """
        return parse_token_response(
            data,
            now=now,
            requested_scopes=self.granted_scopes,
            tenant=self.tenant,
            previous_refresh_token=self.refresh_token,
        )

    # -------------------------------------------------------------------------
    # Keychain mapping
    # -------------------------------------------------------------------------

    def to_entries(self) -> dict[CredentialKey, str | None]:
        """Keychain items for this record (None deletes a stale item)."""
        return {
            CredentialKey.TOKEN: self.access_token,
            CredentialKey.REFRESH_TOKEN: self.refresh_token,
            CredentialKey.TOKEN_EXPIRES_AT: str(round(self.expires_at.timestamp() * 1000)),
            CredentialKey.DOMAIN: self.tenant,
            CredentialKey.GRANTED_SCOPES: " ".join(sorted(self.granted_scopes)) or None,
        }

    @classmethod
    def from_entries(cls, entries: Mapping[CredentialKey, str | None]) -> TokenRecord | None:
        """Rebuild a record from keychain items.

        Returns:
            The record, or None unless both the access token and a
            parseable expiry are present.
        """
        access_token = entries.get(CredentialKey.TOKEN)
        expires_at = _parse_epoch_millis(entries.get(CredentialKey.TOKEN_EXPIRES_AT))
        if not access_token or expires_at is None:
            return None

        scopes = entries.get(CredentialKey.GRANTED_SCOPES) or ""
        return cls(
            access_token=access_token,
            refresh_token=entries.get(CredentialKey.REFRESH_TOKEN) or None,
            expires_at=expires_at,
            tenant=entries.get(CredentialKey.DOMAIN) or None,
            granted_scopes=frozenset(scopes.split()),
        )


def _parse_epoch_millis(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        millis = int(value.strip())
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def _expires_in(data: Mapping[str, Any]) -> float:
    value = data.get("expires_in")
    if value is None:
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    if isinstance(value, bool):
        raise ValueError("expires_in must be a number")
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"expires_in must be a number, got {value!r}") from e
    if seconds <= 0:
        raise ValueError(f"expires_in must be positive, got {value!r}")
    return seconds


def parse_token_response(
    data: Mapping[str, Any],
    *,
    now: datetime,
    requested_scopes: Iterable[str],
    tenant: str | None = None,
    previous_refresh_token: str | None = None,
) -> TokenRecord:
    """Parse an OAuth token response into a TokenRecord.

    Handles standard OAuth 2.0 token response fields:
    - access_token (required)
    - refresh_token (optional)
    - expires_in (optional, defaults to 24h)
    - scope (optional, defaults to the requested scopes per RFC 6749 §5.1)

    Args:
        data: Token response JSON from the authorization server.
        now: Issuance time; expires_at is now + expires_in.
        requested_scopes: Scopes recorded when the response omits "scope".
        tenant: Tenant to keep. Derived from the access token when None.
        previous_refresh_token: Kept when the response has no refresh_token.

    Returns:
        TokenRecord ready for storage.

    Raises:
        ValueError: If access_token or expires_in is unusable.
        TenantResolutionError: If no tenant is given and none can be
            derived from the access token.
    """
    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise ValueError("Token response is missing access_token")

    expires_at = now + timedelta(seconds=_expires_in(data))

    refresh_token = data.get("refresh_token")
    if not isinstance(refresh_token, str) or not refresh_token:
        refresh_token = previous_refresh_token

    scope = data.get("scope")
    granted = frozenset(scope.split()) if isinstance(scope, str) else frozenset(requested_scopes)

    return TokenRecord(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        tenant=tenant if tenant is not None else tenant_from_access_token(access_token),
        granted_scopes=granted,
    )


def tenant_from_access_token(access_token: str) -> str:
    """Extract the tenant host from the access token's audience claim.

    The tenant is the host of the audience whose path is "/api/v2/"
    (e.g. "https://acme.us.auth0.com/api/v2/" -> "acme.us.auth0.com").
    The signature is not verified; the token came straight from the
    token endpoint over TLS.

    Raises:
        TenantResolutionError: If the token cannot be decoded or has no
            matching audience.
    """
    try:
        claims = jwt.decode(
            access_token,
            options={
                "verify_signature": False,
                "verify_aud": False,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except jwt.PyJWTError as e:
        raise TenantResolutionError(f"Failed to extract tenant: {e}") from e

    aud = claims.get("aud")
    audiences = aud if isinstance(aud, list) else [aud]
    for audience in audiences:
        if not isinstance(audience, str):
            continue
        parsed = urlparse(audience)
        if parsed.path == MANAGEMENT_API_AUDIENCE_PATH and parsed.netloc:
            return parsed.netloc

    raise TenantResolutionError("Failed to extract tenant: no management API audience in token")
