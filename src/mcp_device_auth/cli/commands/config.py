"""Config command group for mcp-device-auth CLI.

Provides configuration inspection subcommands.
"""

from __future__ import annotations

__all__ = ["config"]

import json

import click

from mcp_device_auth.config import AppConfig, get_config_path, get_system_log_path
from mcp_device_auth.utils.file_helpers import load_validated_json, require_file_exists

from ..styling import style_dim, style_header, style_scopes


@click.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def config_show(as_json: bool) -> None:
    """Display current configuration.

    Loads configuration from the OS-appropriate location, together with
    the endpoints and log file derived from it.
    """
    config_file_path = get_config_path()

    try:
        require_file_exists(config_file_path, file_type="configuration")
        loaded_config = load_validated_json(config_file_path, AppConfig, file_type="config")
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    endpoints: dict[str, str] = {}
    if loaded_config.auth is not None:
        endpoints = {
            "device_authorization": loaded_config.auth.device_authorization_url,
            "token": loaded_config.auth.token_url,
            "revocation": loaded_config.auth.revocation_url,
        }

    if as_json:
        config_dict = loaded_config.model_dump(mode="json")
        config_dict["_computed"] = {
            "config_file": str(config_file_path),
            "system_log": str(get_system_log_path(loaded_config)),
            "endpoints": endpoints,
        }
        click.echo(json.dumps(config_dict, indent=2))
        return

    click.echo("\nmcp-device-auth configuration:\n")

    click.echo(style_header("Authorization Server"))
    if loaded_config.auth is None:
        click.echo("  (not configured - run 'mcp-device-auth init')")
    else:
        auth = loaded_config.auth
        click.echo(f"  domain: {auth.domain}")
        click.echo(f"  client_id: {auth.client_id}")
        click.echo(f"  audience: {auth.audience}")
        click.echo(f"  scopes: {style_scopes(auth.scopes)}")
        click.echo()
        click.echo("  Endpoints (computed from domain):")
        for name, url in endpoints.items():
            click.echo(f"    {name}: {url}")
    click.echo()

    click.echo(style_header("Logging"))
    click.echo(f"  log_dir: {loaded_config.logging.log_dir}")
    click.echo(f"  log_level: {loaded_config.logging.log_level}")
    click.echo(f"  system log: {get_system_log_path(loaded_config)}")
    click.echo()

    click.echo(f"Config file: {config_file_path}")


@config.command("path")
def config_path() -> None:
    """Show config file path."""
    path = get_config_path()
    click.echo(str(path))
    if not path.exists():
        click.echo(style_dim("(file does not exist - run 'mcp-device-auth init')"), err=True)
