"""Authentication commands for mcp-device-auth CLI.

Commands:
    auth login    - Authorize via browser (Device Flow) or client credentials
    auth logout   - Revoke and clear stored credentials
    auth status   - Show the stored credential
    auth token    - Print a valid access token (refreshing if needed)
    auth check    - Check whether the credential covers given scopes
"""

from __future__ import annotations

__all__ = ["auth"]

import json as json_module
import os
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import click

from mcp_device_auth.config import get_config_path, load_config
from mcp_device_auth.constants import APP_NAME, CLIENT_SECRET_ENV_VAR, KEYRING_SERVICE_NAME
from mcp_device_auth.exceptions import AuthenticationError
from mcp_device_auth.security.auth.client_credentials import ClientCredentialsError
from mcp_device_auth.security.auth.device_flow import (
    AuthorizationServerError,
    DeviceFlowError,
    DeviceGrantSession,
)
from mcp_device_auth.security.auth.gate import GateDecision, GateOutcome, OperationGate
from mcp_device_auth.security.auth.login import (
    LoginResult,
    login_scopes,
    run_client_credentials_flow,
    run_device_flow,
)
from mcp_device_auth.security.auth.poller import (
    DeviceFlowDeniedError,
    DeviceFlowExpiredError,
    PollProgress,
    PollState,
)
from mcp_device_auth.security.auth.scopes import ScopeRequirement
from mcp_device_auth.security.auth.token_lifecycle import TokenLifecycleManager
from mcp_device_auth.security.auth.token_record import TokenRecord
from mcp_device_auth.security.credential_store import KeychainOperationResult, SecureCredentialStore
from mcp_device_auth.security.keyring_utils import get_storage_info

from ..helpers import CommandError, load_auth_config_or_exit, run_async
from ..styling import (
    style_dim,
    style_error,
    style_info,
    style_label,
    style_scopes,
    style_section,
    style_status,
    style_success,
    style_user_code,
    style_verification_uri,
    style_warning,
)

if TYPE_CHECKING:
    from mcp_device_auth.config import OIDCConfig


@click.group()
def auth() -> None:
    """Authentication commands."""
    pass


# =============================================================================
# auth login
# =============================================================================


@auth.command()
@click.option(
    "--no-browser",
    is_flag=True,
    help="Don't automatically open browser",
)
@click.option(
    "--scope",
    "extra_scopes",
    multiple=True,
    help="Additional scope to request (repeatable)",
)
@click.option(
    "--client-credentials",
    is_flag=True,
    help=f"Use the client credentials grant (secret from ${CLIENT_SECRET_ENV_VAR} or a prompt)",
)
def login(no_browser: bool, extra_scopes: tuple[str, ...], client_credentials: bool) -> None:
    """Authorize this machine via browser using Device Flow.

    Shows a code and opens your browser to approve it. The credential is
    stored securely in your OS keychain.

    This is the same pattern as 'gh auth login' or 'aws sso login'.

    With --client-credentials no browser is involved: the configured
    client authenticates with its secret, for tenants where the device
    flow is not available. The secret is never stored.
    """
    if client_credentials and extra_scopes:
        raise click.UsageError("--scope cannot be combined with --client-credentials")

    _, oidc_config = load_auth_config_or_exit(get_config_path())
    store = SecureCredentialStore()

    if not store.is_available():
        click.echo(style_warning("No usable keychain backend found."))
        click.echo("  The credential can be obtained but not saved for later use.")
        click.echo()

    if client_credentials:
        _login_client_credentials(oidc_config, store)
        return

    requested = login_scopes(oidc_config, extra=extra_scopes)

    click.echo("Starting authentication...")
    click.echo()

    def display(session: DeviceGrantSession) -> None:
        click.echo(style_section("Authentication Required"))
        click.echo()
        # Always show the code - user needs to confirm it matches in browser
        click.echo(f"  Your code: {style_user_code(session.user_code)}")
        click.echo()
        click.echo("  Open this URL in your browser:")
        click.echo(f"  {style_verification_uri(session.verification_uri)}")
        click.echo()
        if not no_browser:
            click.echo(style_dim("  Opening your browser..."))
            click.echo()
        click.echo("Waiting for authentication", nl=False)

    def on_progress(progress: PollProgress) -> None:
        if progress.state is PollState.POLLING:
            click.echo(".", nl=False)

    try:
        result = run_async(
            run_device_flow(
                oidc_config,
                store,
                display,
                requested_scopes=requested,
                on_progress=on_progress,
                open_browser=not no_browser,
            )
        )
    except KeyboardInterrupt:
        click.echo()
        raise CommandError("Authentication cancelled.", exit_code=AuthenticationError.exit_code)
    except DeviceFlowExpiredError as e:
        click.echo()
        raise CommandError(
            f"Authentication timed out. Please run '{APP_NAME} auth login' again.", exit_code=e.exit_code
        )
    except DeviceFlowDeniedError as e:
        click.echo()
        raise CommandError("Authentication was denied.", exit_code=e.exit_code)
    except AuthorizationServerError as e:
        click.echo()
        raise CommandError(f"Authorization server error: {e}", exit_code=e.exit_code)
    except DeviceFlowError as e:
        click.echo()
        raise CommandError(f"Authentication failed: {e}", exit_code=e.exit_code)

    click.echo()  # Newline after dots
    _print_login_result(result, store, requested)


def _login_client_credentials(oidc_config: OIDCConfig, store: SecureCredentialStore) -> None:
    client_secret = os.environ.get(CLIENT_SECRET_ENV_VAR)
    if not client_secret:
        try:
            client_secret = click.prompt("Client secret", hide_input=True, type=str)
        except click.Abort:
            raise CommandError("Authentication cancelled.", exit_code=AuthenticationError.exit_code) from None

    click.echo("Authenticating with client credentials...")
    try:
        result = run_async(run_client_credentials_flow(oidc_config, store, client_secret))
    except ClientCredentialsError as e:
        raise CommandError(str(e), exit_code=e.exit_code) from e

    _print_login_result(result, store, frozenset())


def _print_login_result(result: LoginResult, store: SecureCredentialStore, requested: frozenset[str]) -> None:
    record = result.record
    click.echo()
    click.echo(click.style(style_success("Authentication successful!"), bold=True))
    click.echo()
    click.echo(f"  Tenant: {record.tenant}")
    hours_until_expiry = record.seconds_until_expiry(datetime.now(timezone.utc)) / 3600
    click.echo(f"  Token expires in: {hours_until_expiry:.1f} hours")
    click.echo(f"  Refresh token: {'Yes' if record.refresh_token else 'No'}")
    click.echo(f"  Granted scopes: {style_scopes(record.granted_scopes)}")
    if result.stored:
        click.echo(f"  Stored in: {store.backend_name()} (service '{store.service}')")

    not_granted = sorted(requested - record.granted_scopes)
    if not_granted:
        click.echo()
        click.echo(style_warning(f"Not granted: {', '.join(not_granted)}"))

    if not result.stored:
        click.echo()
        click.echo(style_warning("The credential could not be saved to the keychain."))
        click.echo(f"  You will need to run '{APP_NAME} auth login' again next time.")


# =============================================================================
# auth logout
# =============================================================================


@auth.command()
@click.option(
    "--no-revoke",
    is_flag=True,
    help="Only clear the keychain, don't revoke the refresh token",
)
def logout(no_revoke: bool) -> None:
    """Revoke and remove stored credentials.

    Revokes the refresh token at the authorization server (best effort)
    and deletes every credential item from your OS keychain. You will
    need to run 'auth login' again afterwards.
    """
    app_config = load_config(get_config_path())
    store = SecureCredentialStore()

    click.echo(style_info("Clearing authentication data..."))
    click.echo()

    oidc_config = app_config.auth
    if oidc_config is not None and not no_revoke:
        if run_async(_revoke(oidc_config, store)):
            click.echo(style_success("Refresh token revoked."))

    results = store.clear_all()
    successful = [r for r in results if r.success]
    failed = [r for r in results if r.error is not None]

    if successful:
        names = ", ".join(r.key.description for r in successful)
        click.echo(style_success(f"Successfully removed {names} from your system keychain."))
    elif not failed:
        click.echo(style_warning("No authentication data was found in your system keychain."))

    if failed:
        _print_failed_deletions(failed)
        raise CommandError("Some credentials could not be removed.")

    click.echo()
    click.echo(f"Run '{APP_NAME} auth login' to authenticate again.")


async def _revoke(oidc_config: OIDCConfig, store: SecureCredentialStore) -> bool:
    async with TokenLifecycleManager(oidc_config, store) as tokens:
        return await tokens.revoke()


def _print_failed_deletions(failed: list[KeychainOperationResult]) -> None:
    click.echo()
    click.echo(style_warning("Some credentials could not be removed and may require manual cleanup:"))
    for result in failed:
        click.echo(style_error(f"{result.key.description}: {result.error or 'Unknown error'}"))
    click.echo()
    click.echo(
        style_info(
            "To manually remove credentials, use your system's keychain manager "
            f"and search for '{KEYRING_SERVICE_NAME}'."
        )
    )


# =============================================================================
# auth status
# =============================================================================


@auth.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status(as_json: bool) -> None:
    """Show authentication status.

    Displays tenant, token expiry, granted scopes and storage backend.
    """
    app_config = load_config(get_config_path())
    store = SecureCredentialStore()
    storage_info = get_storage_info(store.backend)

    result: dict[str, Any] = {
        "configured": app_config.auth is not None,
        "authenticated": False,
        "status": "not_authenticated",
        "storage": storage_info,
    }

    if app_config.auth is not None:
        result["oidc"] = {
            "domain": app_config.auth.domain,
            "client_id": app_config.auth.client_id,
            "audience": app_config.auth.audience,
        }

    record = TokenRecord.from_entries(store.get_many())
    now = datetime.now(timezone.utc)
    if record is not None:
        expired = record.is_expired(now, buffer_seconds=0)
        result["status"] = "token_expired" if expired else "authenticated"
        result["authenticated"] = not expired
        result["token"] = {
            "tenant": record.tenant,
            "expires_at": record.expires_at.isoformat(),
            "expires_in_seconds": round(record.seconds_until_expiry(now)),
            "has_refresh_token": bool(record.refresh_token),
            "granted_scopes": sorted(record.granted_scopes),
        }

    if as_json:
        click.echo(json_module.dumps(result, indent=2))
        return

    _print_status_formatted(result, record, now)


def _print_status_formatted(result: dict[str, Any], record: TokenRecord | None, now: datetime) -> None:
    """Print auth status in human-readable format."""
    storage_info = result["storage"]
    click.echo(style_section("Storage"))
    click.echo(f"  Backend: {storage_info['backend']}")
    click.echo(f"  Service: {storage_info['service']}")
    if not storage_info["available"]:
        click.echo(f"  {style_warning('Keychain not available')}")
    click.echo()

    if record is None:
        click.echo(style_status("not_authenticated"))
        click.echo()
        if result["configured"]:
            click.echo(f"Run '{APP_NAME} auth login' to authenticate.")
        else:
            click.echo(f"Run '{APP_NAME} init' to configure the authorization server.")
        return

    click.echo(style_status(result["status"]))
    click.echo()

    click.echo(style_section("Session"))
    click.echo(f"  {style_label('Tenant')} {record.tenant or '(unknown)'}")

    expires_in = record.seconds_until_expiry(now)
    if expires_in > 0:
        click.echo(f"  {style_label('Expires in')} {expires_in / 3600:.1f} hours")
    else:
        expired_on = record.expires_at.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
        click.echo(f"  {style_label('Expired on')} {expired_on}")

    click.echo(f"  {style_label('Refresh token')} {'Yes' if record.refresh_token else 'No'}")
    click.echo(f"  {style_label('Scopes')} {style_scopes(record.granted_scopes, empty='(none recorded)')}")
    click.echo()

    if result["status"] == "token_expired":
        if record.refresh_token:
            click.echo("Token will be refreshed automatically on next use.")
        else:
            click.echo(f"Run '{APP_NAME} auth login' to re-authenticate.")
    else:
        click.echo(style_dim(f"To log out, run: {APP_NAME} auth logout"))


# =============================================================================
# auth token
# =============================================================================


@auth.command()
def token() -> None:
    """Print a valid access token.

    Refreshes the token first if it expires within five minutes. Falls
    back to the stored token if refresh fails.
    """
    _, oidc_config = load_auth_config_or_exit(get_config_path())

    access_token = run_async(_get_valid_token(oidc_config, SecureCredentialStore()))
    if access_token is None:
        raise CommandError(
            f"Not authenticated. Run '{APP_NAME} auth login' to authenticate.",
            exit_code=AuthenticationError.exit_code,
        )
    click.echo(access_token)


async def _get_valid_token(oidc_config: OIDCConfig, store: SecureCredentialStore) -> str | None:
    async with TokenLifecycleManager(oidc_config, store) as tokens:
        return await tokens.get_valid_token()


# =============================================================================
# auth check
# =============================================================================


@auth.command()
@click.argument("scopes", nargs=-1)
@click.option(
    "--operation",
    default="cli-check",
    show_default=True,
    help="Operation name reported in the decision",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def check(scopes: tuple[str, ...], operation: str, as_json: bool) -> None:
    """Check whether the stored credential may run an operation.

    Runs the same gate as privileged operations: obtain a valid token
    (refreshing if needed), then require every SCOPE to be granted.

    Example:
        mcp-device-auth auth check read:clients update:clients
    """
    try:
        requirement = ScopeRequirement(operation=operation, scopes=frozenset(scopes))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="SCOPES") from e

    _, oidc_config = load_auth_config_or_exit(get_config_path())
    decision = run_async(_authorize(oidc_config, SecureCredentialStore(), requirement))

    if as_json:
        click.echo(
            json_module.dumps(
                {
                    "operation": decision.operation,
                    "outcome": decision.outcome.value,
                    "missing_scopes": list(decision.missing_scopes),
                    "message": decision.message,
                },
                indent=2,
            )
        )
    elif decision.allowed:
        click.echo(style_success(f"Operation '{operation}' is authorized."))
        if decision.credentials is not None:
            click.echo(f"  Tenant: {decision.credentials.tenant}")
    else:
        click.echo(style_error(decision.message), err=True)

    if decision.outcome is GateOutcome.NOT_AUTHENTICATED:
        sys.exit(AuthenticationError.exit_code)
    if decision.outcome is GateOutcome.MISSING_SCOPES:
        sys.exit(1)


async def _authorize(
    oidc_config: OIDCConfig,
    store: SecureCredentialStore,
    requirement: ScopeRequirement,
) -> GateDecision:
    async with TokenLifecycleManager(oidc_config, store) as tokens:
        return await OperationGate(tokens).authorize(requirement)
