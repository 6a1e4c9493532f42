"""OAuth Device Authorization Flow (RFC 8628): device code request.

User runs `mcp-device-auth auth login`, sees a code, opens browser to
authenticate, and tokens are stored in the keychain.

This is the same pattern as `gh auth login`, `aws sso login`, `gcloud auth login`.

Flow:
1. Request device code from the authorization server (this module)
2. Display: "Go to https://... and enter code: XXXX-XXXX"
3. Poll token endpoint until user completes authentication (poller.py)
4. Store tokens in the keychain (credential_store.py)
"""

from __future__ import annotations

__all__ = [
    "AuthorizationServerError",
    "DeviceFlowError",
    "DeviceGrantInitiator",
    "DeviceGrantSession",
    "is_safe_browser_url",
    "open_verification_uri",
]

import webbrowser
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from mcp_device_auth.constants import (
    ALLOWED_BROWSER_SCHEMES,
    DEVICE_FLOW_POLL_INTERVAL_SECONDS,
    OAUTH_CLIENT_TIMEOUT_SECONDS,
)
from mcp_device_auth.exceptions import AuthenticationError
from mcp_device_auth.telemetry.system.system_logger import get_system_logger
from mcp_device_auth.utils.logging.logging_helpers import error_details

if TYPE_CHECKING:
    from mcp_device_auth.config import OIDCConfig
    from mcp_device_auth.security.auth.poller import PollState

_logger = get_system_logger("device_flow")


class DeviceFlowError(AuthenticationError):
    """Device flow specific errors.

    Attributes:
        state: Terminal poll state when raised by the poller, else None.
    """

    def __init__(self, message: str, *, state: PollState | None = None) -> None:
        super().__init__(message)
        self.state = state


class AuthorizationServerError(DeviceFlowError):
    """The authorization server answered with an OAuth error.

    Attributes:
        error: OAuth error code (e.g. "unauthorized_client").
        error_description: Human-readable description, if provided.
    """

    def __init__(
        self,
        error: str,
        error_description: str | None = None,
        *,
        state: PollState | None = None,
    ) -> None:
        message = f"{error}: {error_description}" if error_description else error
        super().__init__(message, state=state)
        self.error = error
        self.error_description = error_description


@dataclass(frozen=True, slots=True)
class DeviceGrantSession:
    """Device authorization session, held in memory during setup only.

    Attributes:
        device_code: Code used to poll for tokens (don't show to user).
        user_code: Code user enters in browser (e.g., "HDFC-LQRT").
        verification_uri: URL user opens to authenticate. The
            "verification_uri_complete" form (code embedded) when provided.
        interval_seconds: Minimum wait between polls.
        expires_in_seconds: Session lifetime; bounds the poll loop.
    """

    device_code: str
    user_code: str
    verification_uri: str
    interval_seconds: float
    expires_in_seconds: float

    def __repr__(self) -> str:
        return (
            f"DeviceGrantSession(user_code={self.user_code!r}, "
            f"verification_uri={self.verification_uri!r}, "
            f"interval_seconds={self.interval_seconds}, "
            f"expires_in_seconds={self.expires_in_seconds})"
        )

    @classmethod
    def from_response(cls, data: Mapping[str, Any]) -> DeviceGrantSession:
        """Parse the device authorization response.

        Raises:
            AuthorizationServerError: If a required field is missing or invalid.
        """
        device_code = data.get("device_code")
        user_code = data.get("user_code")
        verification_uri = data.get("verification_uri_complete") or data.get("verification_uri")

        for name, value in (
            ("device_code", device_code),
            ("user_code", user_code),
            ("verification_uri", verification_uri),
        ):
            if not isinstance(value, str) or not value:
                raise AuthorizationServerError(
                    "invalid_response", f"Device code response is missing {name}"
                )

        return cls(
            device_code=device_code,
            user_code=user_code,
            verification_uri=verification_uri,
            interval_seconds=_positive_number(
                data, "interval", default=DEVICE_FLOW_POLL_INTERVAL_SECONDS
            ),
            expires_in_seconds=_positive_number(data, "expires_in"),
        )


def _positive_number(data: Mapping[str, Any], field: str, default: float | None = None) -> float:
    value = data.get(field)
    if value is None and default is not None:
        return default
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    raise AuthorizationServerError(
        "invalid_response", f"Device code response has invalid {field}: {value!r}"
    )


# =============================================================================
# Browser launch
# =============================================================================


def is_safe_browser_url(url: str) -> bool:
    """Check that a URL may be handed to the platform URL handler.

    Only http/https URLs with a host are allowed, so a hostile server
    cannot make us launch arbitrary scheme handlers.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in ALLOWED_BROWSER_SCHEMES and bool(parsed.netloc)


def open_verification_uri(url: str, opener: Callable[[str], bool] = webbrowser.open) -> bool:
    """Try to open the verification URL in a browser.

    Failures are logged and reported as False, never raised: the user
    can always type the URL and code manually.

    Args:
        url: Verification URL from the device code response.
        opener: Browser launcher (webbrowser.open by default).

    Returns:
        True if a browser was launched.
    """
    if not is_safe_browser_url(url):
        _logger.warning(
            {
                "event": "browser_url_rejected",
                "message": f"Refusing to open verification URL with unsupported scheme: {url!r}",
            }
        )
        return False

    try:
        opened = bool(opener(url))
    except (OSError, webbrowser.Error) as e:
        _logger.warning(
            {
                "event": "browser_open_failed",
                "message": f"Failed to open browser: {e}",
                **error_details(e),
            }
        )
        return False

    if opened:
        _logger.debug({"event": "browser_opened", "message": "Browser opened successfully"})
    else:
        _logger.info({"event": "browser_unavailable", "message": "No browser available to open"})
    return opened


# =============================================================================
# Device code request
# =============================================================================


class DeviceGrantInitiator:
    """Starts a device authorization session.

    Usage:
        async with DeviceGrantInitiator(oidc_config, display=show_code) as initiator:
            session = await initiator.initiate({"offline_access", "read:clients"})
    """

    def __init__(
        self,
        config: OIDCConfig,
        http_client: httpx.AsyncClient | None = None,
        *,
        display: Callable[[DeviceGrantSession], None] | None = None,
        open_browser: bool = True,
        browser_opener: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        """Initialize the initiator.

        Args:
            config: OIDC configuration with domain, client_id, audience.
            http_client: Optional httpx client (for testing).
            display: Called with the session before the browser is opened,
                to show the user code and URL.
            open_browser: Whether to try launching a browser.
            browser_opener: Browser launcher (for testing).
        """
        self._config = config
        self._client = http_client or httpx.AsyncClient(timeout=OAUTH_CLIENT_TIMEOUT_SECONDS)
        self._owns_client = http_client is None
        self._display = display
        self._open_browser = open_browser
        self._browser_opener = browser_opener

    async def __aenter__(self) -> DeviceGrantInitiator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def initiate(self, requested_scopes: Iterable[str]) -> DeviceGrantSession:
        """Request a device code and present it to the user.

        Args:
            requested_scopes: Scopes to request (sent space-joined).

        Returns:
            DeviceGrantSession for the poller.

        Raises:
            AuthorizationServerError: Server returned an error or a
                malformed response.
            DeviceFlowError: Transport failure or non-JSON response.
        """
        form = {
            "client_id": self._config.client_id,
            "audience": self._config.audience,
        }
        scope = " ".join(sorted(set(requested_scopes)))
        if scope:
            form["scope"] = scope

        try:
            response = await self._client.post(
                self._config.device_authorization_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            _logger.error(
                {
                    "event": "device_code_request_failed",
                    "message": f"HTTP error requesting device code: {e}",
                    **error_details(e),
                }
            )
            raise DeviceFlowError(f"HTTP error requesting device code: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise DeviceFlowError(
                f"Device code request returned a non-JSON response (HTTP {response.status_code})"
            ) from e
        if not isinstance(data, dict):
            raise DeviceFlowError("Device code request returned an unexpected JSON document")

        if data.get("error"):
            _logger.error(
                {
                    "event": "device_code_rejected",
                    "message": f"Authorization server rejected device code request: {data['error']}",
                    "error": data["error"],
                    "status_code": response.status_code,
                }
            )
            raise AuthorizationServerError(str(data["error"]), data.get("error_description"))

        if not response.is_success:
            raise AuthorizationServerError(
                "invalid_response", f"Device code request failed with HTTP {response.status_code}"
            )

        session = DeviceGrantSession.from_response(data)
        _logger.info(
            {
                "event": "device_code_issued",
                "message": "Device authorization started",
                "expires_in": session.expires_in_seconds,
                "interval": session.interval_seconds,
            }
        )

        if self._display is not None:
            self._display(session)

        if self._open_browser:
            open_verification_uri(session.verification_uri, self._browser_opener)

        return session
