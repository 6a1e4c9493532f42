"""Init command for mcp-device-auth CLI.

Handles interactive and non-interactive configuration initialization.
"""

from __future__ import annotations

__all__ = ["init"]

import sys
from typing import Literal, cast

import click
from pydantic import ValidationError

from mcp_device_auth.config import (
    AppConfig,
    LoggingConfig,
    OIDCConfig,
    get_config_path,
    load_config,
    save_config,
)
from mcp_device_auth.constants import APP_NAME, DEFAULT_LOG_DIR, MANAGEMENT_API_AUDIENCE_PATH, OFFLINE_ACCESS_SCOPE
from mcp_device_auth.security.credential_store import CredentialKey, SecureCredentialStore

from ..styling import style_dim, style_error, style_header, style_success, style_warning


def _prompt_with_retry(prompt_text: str, default: str | None = None) -> str:
    """Prompt for a required value, retrying if empty."""
    while True:
        value: str = click.prompt(
            prompt_text,
            type=str,
            default=default or "",
            show_default=bool(default),
        )
        if value.strip():
            return value.strip()
        click.echo("  This field is required.")


def _default_audience(domain: str) -> str:
    """Management API audience for a domain (e.g. https://t.auth0.com/api/v2/)."""
    host = domain.split("://", 1)[-1].rstrip("/")
    return f"https://{host}{MANAGEMENT_API_AUDIENCE_PATH}"


def _check_auth_change_warning(old_config: AppConfig | None, new_auth: OIDCConfig) -> None:
    """Warn if authorization settings changed while a credential is stored.

    A credential issued for another domain, client or audience will not
    be usable with the new settings.
    """
    if old_config is None or old_config.auth is None:
        return

    old_auth = old_config.auth
    if (old_auth.domain, old_auth.client_id, old_auth.audience) == (
        new_auth.domain,
        new_auth.client_id,
        new_auth.audience,
    ):
        return

    if SecureCredentialStore().get(CredentialKey.TOKEN) is None:
        return

    click.echo()
    click.echo(style_warning("Authorization settings changed"))
    click.echo("  Your stored credential was issued with different settings.")
    click.echo(f"  Run '{APP_NAME} auth login' to re-authenticate.")
    click.echo()


@click.command()
@click.option("--non-interactive", is_flag=True, help="Fail instead of prompting for missing values")
@click.option("--domain", help="Authorization server domain (e.g., your-tenant.us.auth0.com)")
@click.option("--client-id", help="Client ID registered for the device grant")
@click.option("--audience", help="API audience (default: https://<domain>/api/v2/)")
@click.option("--scope", "scopes", multiple=True, help="Scope to request at login (repeatable)")
@click.option("--log-dir", help=f"Log directory (default: {DEFAULT_LOG_DIR})")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Console log level",
)
@click.option("--force", is_flag=True, help="Overwrite existing config without prompting")
def init(
    non_interactive: bool,
    domain: str | None,
    client_id: str | None,
    audience: str | None,
    scopes: tuple[str, ...],
    log_dir: str | None,
    log_level: str,
    force: bool,
) -> None:
    """Initialize configuration.

    Creates configuration at the OS-appropriate location:
    - macOS: ~/Library/Application Support/mcp-device-auth/
    - Linux: ~/.config/mcp-device-auth/
    - Windows: C:\\Users\\<user>\\AppData\\Roaming\\mcp-device-auth/

    offline_access is always requested so that a refresh token is issued.

    Use --non-interactive with --domain and --client-id for scripted setup.
    """
    config_path = get_config_path()
    config_exists = config_path.exists()

    if config_exists and not force:
        if non_interactive:
            click.echo(style_error("Error: Config already exists. Use --force to overwrite."), err=True)
            sys.exit(1)
        if not click.confirm("Config already exists. Overwrite?", default=False):
            click.echo(style_dim("Aborted."))
            sys.exit(0)

    old_config = load_config(config_path) if config_exists else None

    try:
        if non_interactive:
            if not domain or not client_id:
                click.echo(style_error("Error: --domain and --client-id are required"), err=True)
                sys.exit(1)
        else:
            click.echo(style_header("Authorization Server"))
            click.echo("Configure the OAuth device authorization grant.\n")
            domain = domain or _prompt_with_retry("Domain (e.g., your-tenant.us.auth0.com)")
            client_id = client_id or _prompt_with_retry("Client ID")
            audience = audience or _prompt_with_retry("API audience", default=_default_audience(domain))
    except click.Abort:
        click.echo(style_dim("Aborted."))
        sys.exit(0)

    # Guaranteed by the checks/prompts above
    assert domain is not None
    assert client_id is not None

    requested = [OFFLINE_ACCESS_SCOPE] + sorted(set(scopes) - {OFFLINE_ACCESS_SCOPE})

    try:
        oidc_config = OIDCConfig(
            domain=domain,
            client_id=client_id,
            audience=audience or _default_audience(domain),
            scopes=requested,
        )
        config = AppConfig(
            auth=oidc_config,
            logging=LoggingConfig(
                log_dir=log_dir or DEFAULT_LOG_DIR,
                log_level=cast(Literal["DEBUG", "INFO", "WARNING", "ERROR"], log_level.upper()),
            ),
        )
    except ValidationError as e:
        click.echo(style_error("Error: Invalid configuration:"), err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            click.echo(f"  - {loc}: {error['msg']}", err=True)
        sys.exit(1)

    _check_auth_change_warning(old_config, oidc_config)

    try:
        saved_path = save_config(config, config_path)
    except OSError as e:
        click.echo(style_error(f"Error: Failed to save configuration: {e}"), err=True)
        sys.exit(1)

    click.echo()
    click.echo(style_success(f"Configuration saved to {saved_path}"))
    click.echo()
    click.echo("Next step:")
    click.echo(f"  {APP_NAME} auth login")
