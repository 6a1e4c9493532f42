"""Main CLI entry point for mcp-device-auth.

Defines the CLI group and registers all subcommands.

Commands:
    auth    - Credential commands (login, logout, status, token, check)
    config  - Configuration management (show, path)
    init    - Configure the authorization server

Subcommand help:
    mcp-device-auth COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli", "main"]

import logging
import sys

import click

from mcp_device_auth import __version__
from mcp_device_auth.constants import APP_NAME
from mcp_device_auth.telemetry.system import set_console_level

from .commands.auth import auth
from .commands.config import config
from .commands.init import init


class ReorderedGroup(click.Group):
    """Custom group that shows commands before custom help text."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Add extra help after commands section."""
        formatter.write(
            """
Quick Start:
  mcp-device-auth init             Configure the authorization server
  mcp-device-auth auth login       Authorize this machine (device flow)
  mcp-device-auth auth status      Show the stored credential

Non-Interactive Setup:
  mcp-device-auth init --non-interactive \\
    --domain your-tenant.us.auth0.com \\
    --client-id my-client-id \\
    --scope read:clients --scope read:logs
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option("--debug", is_flag=True, help="Show debug log output on stderr")
@click.pass_context
def cli(ctx: click.Context, version: bool, debug: bool) -> None:
    """mcp-device-auth: Device-flow credentials for the management API."""
    if version:
        click.echo(f"{APP_NAME} {__version__}")
        sys.exit(0)
    if debug:
        set_console_level(logging.DEBUG)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(auth)
cli.add_command(config)
cli.add_command(init)


def main() -> None:
    """CLI entry point."""
    cli()
