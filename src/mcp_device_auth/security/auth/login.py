"""Interactive setup: device code request, polling, keychain write.

Convenience wrappers used by `auth login`. One HTTP client is shared by
the initiator and the poller. The client credentials grant is the
non-interactive alternative for clients that hold a secret.
"""

from __future__ import annotations

__all__ = [
    "LoginResult",
    "login_scopes",
    "run_client_credentials_flow",
    "run_device_flow",
]

import asyncio
import webbrowser
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from mcp_device_auth.constants import OAUTH_CLIENT_TIMEOUT_SECONDS, OFFLINE_ACCESS_SCOPE
from mcp_device_auth.security.auth.client_credentials import ClientCredentialsGrant
from mcp_device_auth.security.auth.device_flow import DeviceGrantInitiator, DeviceGrantSession
from mcp_device_auth.security.auth.poller import AuthorizationPoller, PollProgress
from mcp_device_auth.security.auth.scopes import ScopeRequirement, collect_scopes
from mcp_device_auth.security.credential_store import CredentialKey

if TYPE_CHECKING:
    from mcp_device_auth.config import OIDCConfig
    from mcp_device_auth.security.auth.token_record import TokenRecord
    from mcp_device_auth.security.credential_store import SecureCredentialStore


@dataclass(frozen=True, slots=True)
class LoginResult:
    """Outcome of a successful login.

    Attributes:
        record: The issued credential.
        stored: False if the keychain did not accept it; the user will
            have to log in again in the next process.
    """

    record: TokenRecord
    stored: bool


def login_scopes(
    config: OIDCConfig,
    extra: Iterable[str] = (),
    requirements: Iterable[ScopeRequirement] = (),
) -> frozenset[str]:
    """Scopes to request at login.

    Configured scopes, plus offline_access (so a refresh token is
    issued), plus extra scopes and everything the given operations need.
    """
    return frozenset(config.scopes) | {OFFLINE_ACCESS_SCOPE} | frozenset(extra) | collect_scopes(requirements)


async def run_device_flow(
    config: OIDCConfig,
    store: SecureCredentialStore,
    display: Callable[[DeviceGrantSession], None],
    *,
    requested_scopes: Iterable[str] | None = None,
    on_progress: Callable[[PollProgress], None] | None = None,
    open_browser: bool = True,
    http_client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    browser_opener: Callable[[str], bool] = webbrowser.open,
) -> LoginResult:
    """Run the complete device flow.

    Args:
        config: OIDC configuration.
        store: Keychain store the credential is written to.
        display: Called with the session to show the user code and URL.
        requested_scopes: Scopes to request. Defaults to login_scopes(config).
        on_progress: Poll progress callback (spinner, status line).
        open_browser: Whether to try launching a browser.
        http_client: Optional httpx client (for testing).
        sleep: Wait coroutine for the poll loop (for testing).
        browser_opener: Browser launcher (for testing).

    Returns:
        LoginResult with the issued credential.

    Raises:
        DeviceFlowError: If authentication fails (see poller for subclasses).

    Example:
        def show_code(session):
            print(f"Go to: {session.verification_uri}")
            print(f"Enter code: {session.user_code}")

        result = await run_device_flow(config, SecureCredentialStore(), show_code)
    """
    scopes = frozenset(requested_scopes) if requested_scopes is not None else login_scopes(config)

    client = http_client or httpx.AsyncClient(timeout=OAUTH_CLIENT_TIMEOUT_SECONDS)
    try:
        initiator = DeviceGrantInitiator(
            config,
            client,
            display=display,
            open_browser=open_browser,
            browser_opener=browser_opener,
        )
        session = await initiator.initiate(scopes)

        poller = AuthorizationPoller(config, store, client, sleep=sleep, on_progress=on_progress)
        record = await poller.poll(session, scopes)
    finally:
        if http_client is None:
            await client.aclose()

    stored = store.get(CredentialKey.TOKEN) == record.access_token
    return LoginResult(record=record, stored=stored)


async def run_client_credentials_flow(
    config: OIDCConfig,
    store: SecureCredentialStore,
    client_secret: str,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> LoginResult:
    """Obtain a credential with the client credentials grant.

    Args:
        config: OIDC configuration (client_id and audience are sent).
        store: Keychain store the credential is written to.
        client_secret: Secret of the configured client. Never stored.
        http_client: Optional httpx client (for testing).

    Returns:
        LoginResult with the issued credential.

    Raises:
        ClientCredentialsError: If the token endpoint did not issue a token.
    """
    async with ClientCredentialsGrant(config, store, http_client) as grant:
        record = await grant.request(client_secret)

    stored = store.get(CredentialKey.TOKEN) == record.access_token
    return LoginResult(record=record, stored=stored)
