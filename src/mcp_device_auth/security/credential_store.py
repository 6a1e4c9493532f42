"""Secure credential storage in the OS keychain.

Stores the device-grant credential as separate keychain items under a
single service name:

    Service: auth0-mcp
    AUTH0_TOKEN              access token
    AUTH0_REFRESH_TOKEN      refresh token (optional)
    AUTH0_TOKEN_EXPIRES_AT   expiry, epoch milliseconds as a decimal string
    AUTH0_DOMAIN             tenant the token was issued for
    AUTH0_GRANTED_SCOPES     space-separated scopes granted at issuance

Uses the system's secure credential storage via keyring:
- macOS: Keychain
- Windows: Credential Locker
- Linux: Secret Service API (GNOME Keyring, KDE Wallet, etc.)

Keychain failures never escape this module. Reads degrade to None and
writes/deletes to False, and every failure is logged without the value.
"""

from __future__ import annotations

__all__ = [
    "CredentialKey",
    "KeychainOperationResult",
    "SecureCredentialStore",
]

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from mcp_device_auth.constants import KEYRING_SERVICE_NAME
from mcp_device_auth.security.keyring_utils import describe_backend, is_keyring_available
from mcp_device_auth.telemetry.system.system_logger import get_system_logger
from mcp_device_auth.utils.logging.logging_helpers import error_details

_logger = get_system_logger("keychain")


class CredentialKey(str, Enum):
    """Keychain item names (the keyring "username" under the service)."""

    TOKEN = "AUTH0_TOKEN"
    REFRESH_TOKEN = "AUTH0_REFRESH_TOKEN"
    TOKEN_EXPIRES_AT = "AUTH0_TOKEN_EXPIRES_AT"
    DOMAIN = "AUTH0_DOMAIN"
    GRANTED_SCOPES = "AUTH0_GRANTED_SCOPES"

    @property
    def description(self) -> str:
        """User-facing name for logout and status output."""
        return _DESCRIPTIONS[self]


_DESCRIPTIONS: dict[CredentialKey, str] = {
    CredentialKey.TOKEN: "access token",
    CredentialKey.REFRESH_TOKEN: "refresh token",
    CredentialKey.TOKEN_EXPIRES_AT: "token expiration",
    CredentialKey.DOMAIN: "domain information",
    CredentialKey.GRANTED_SCOPES: "granted scopes",
}


@dataclass(frozen=True, slots=True)
class KeychainOperationResult:
    """Outcome of deleting one keychain item.

    Attributes:
        key: Item that was deleted.
        success: True if the item existed and was removed.
        error: Error message when the keychain call failed. None with
            success=False means the item was simply not present.
    """

    key: CredentialKey
    success: bool
    error: str | None = None

    @property
    def not_found(self) -> bool:
        return not self.success and self.error is None


class SecureCredentialStore:
    """Typed access to the credential items in the OS keychain.

    Usage:
        store = SecureCredentialStore()
        store.set_many({CredentialKey.TOKEN: "ey...", CredentialKey.DOMAIN: "t.auth0.com"})
        token = store.get(CredentialKey.TOKEN)
    """

    def __init__(
        self,
        service: str = KEYRING_SERVICE_NAME,
        backend: KeyringBackend | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            service: Keychain service name all items are stored under.
            backend: Explicit keyring backend. Defaults to the active
                keyring, resolved on each call.
        """
        self._service = service
        self._backend = backend

    @property
    def service(self) -> str:
        return self._service

    @property
    def backend(self) -> KeyringBackend:
        """Backend used for keychain calls."""
        return self._backend or keyring.get_keyring()

    def is_available(self) -> bool:
        """Check that the backend can actually store and read secrets."""
        return is_keyring_available(self.backend)

    def backend_name(self) -> str:
        return describe_backend(self.backend)

    # -------------------------------------------------------------------------
    # Single items
    # -------------------------------------------------------------------------

    def get(self, key: CredentialKey) -> str | None:
        """Read one item.

        Returns:
            The stored value, or None if absent or the keychain failed.
        """
        try:
            return self.backend.get_password(self._service, key.value)
        except Exception as e:
            self._log_failure("keychain_read_failed", f"Error retrieving {key.value} from keychain", key, e)
            return None

    def set(self, key: CredentialKey, value: str) -> bool:
        """Write one item.

        Returns:
            True if the value was stored.
        """
        try:
            self.backend.set_password(self._service, key.value, value)
        except Exception as e:
            self._log_failure("keychain_write_failed", f"Error storing {key.value} in keychain", key, e)
            return False

        _logger.debug({"event": "keychain_item_stored", "message": f"Stored {key.value} in keychain"})
        return True

    def delete(self, key: CredentialKey) -> bool:
        """Delete one item.

        Returns:
            True if the item existed and was removed, False if it was
            not present or the keychain failed.
        """
        return self._delete(key).success

    # -------------------------------------------------------------------------
    # Multiple items
    # -------------------------------------------------------------------------

    def get_many(self, keys: Iterable[CredentialKey] | None = None) -> dict[CredentialKey, str | None]:
        """Read several items (all items by default)."""
        return {key: self.get(key) for key in (keys if keys is not None else CredentialKey)}

    def set_many(self, values: Mapping[CredentialKey, str | None]) -> bool:
        """Write several items as one logical update.

        A value of None deletes that item. If any write fails, the items
        already written are restored to what they held before the call.

        Args:
            values: Item -> new value (None to delete).

        Returns:
            True if every item was updated, False if the update was
            rolled back (or the current values could not be read).
        """
        backend = self.backend

        try:
            snapshot = {key: backend.get_password(self._service, key.value) for key in values}
        except Exception as e:
            _logger.error(
                {
                    "event": "keychain_update_aborted",
                    "message": "Could not read current keychain values, nothing was written",
                    **error_details(e),
                }
            )
            return False

        written: list[CredentialKey] = []
        for key, value in values.items():
            try:
                self._apply(backend, key, value)
            except Exception as e:
                self._log_failure(
                    "keychain_update_failed",
                    f"Error updating {key.value} in keychain, restoring previous values",
                    key,
                    e,
                )
                self._restore(backend, written, snapshot)
                return False
            written.append(key)

        _logger.debug(
            {
                "event": "keychain_items_stored",
                "message": f"Updated {len(written)} keychain item(s)",
                "keys": [key.value for key in written],
            }
        )
        return True

    def clear_all(self) -> list[KeychainOperationResult]:
        """Delete every credential item.

        Returns:
            One result per item, in CredentialKey order.
        """
        results = [self._delete(key) for key in CredentialKey]
        removed = sum(1 for r in results if r.success)
        _logger.info(
            {
                "event": "keychain_cleared",
                "message": f"Cleared {removed}/{len(results)} items from keychain",
                "failed": [r.key.value for r in results if r.error is not None],
            }
        )
        return results

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _apply(self, backend: KeyringBackend, key: CredentialKey, value: str | None) -> None:
        if value is None:
            try:
                backend.delete_password(self._service, key.value)
            except PasswordDeleteError:
                pass  # Already absent
        else:
            backend.set_password(self._service, key.value, value)

    def _restore(
        self,
        backend: KeyringBackend,
        written: list[CredentialKey],
        snapshot: Mapping[CredentialKey, str | None],
    ) -> None:
        for key in reversed(written):
            try:
                self._apply(backend, key, snapshot[key])
            except Exception as e:
                self._log_failure(
                    "keychain_restore_failed",
                    f"Could not restore {key.value} after a failed update",
                    key,
                    e,
                )

    def _delete(self, key: CredentialKey) -> KeychainOperationResult:
        try:
            self.backend.delete_password(self._service, key.value)
        except PasswordDeleteError:
            _logger.debug({"event": "keychain_item_not_found", "message": f"{key.value} not in keychain"})
            return KeychainOperationResult(key=key, success=False)
        except Exception as e:
            self._log_failure("keychain_delete_failed", f"Error deleting {key.value} from keychain", key, e)
            return KeychainOperationResult(key=key, success=False, error=str(e) or type(e).__name__)

        _logger.debug({"event": "keychain_item_deleted", "message": f"Deleted {key.value} from keychain"})
        return KeychainOperationResult(key=key, success=True)

    def _log_failure(self, event: str, message: str, key: CredentialKey, error: Exception) -> None:
        _logger.warning(
            {
                "event": event,
                "message": message,
                "service": self._service,
                "key": key.value,
                **error_details(error),
            }
        )
