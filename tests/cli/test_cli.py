"""Unit tests for CLI commands.

Tests CLI behavior using Click's CliRunner for isolated, fast testing.
Tests use the AAA pattern (Arrange-Act-Assert) for clarity.

The in-memory keyring from conftest backs every SecureCredentialStore
created by the commands, and get_config_path is patched per command
module to point at a temporary config file.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from mcp_device_auth import __version__
from mcp_device_auth.cli import cli
from mcp_device_auth.constants import CLIENT_SECRET_ENV_VAR
from mcp_device_auth.security.auth.client_credentials import ClientCredentialsError
from mcp_device_auth.security.auth.device_flow import DeviceGrantSession
from mcp_device_auth.security.auth.login import LoginResult
from mcp_device_auth.security.auth.poller import (
    DeviceFlowDeniedError,
    DeviceFlowExpiredError,
    PollProgress,
    PollState,
)
from mcp_device_auth.security.auth.token_record import TokenRecord
from mcp_device_auth.security.credential_store import CredentialKey, SecureCredentialStore

TENANT = "tenant.example.auth0.com"


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI runner for testing."""
    return CliRunner()


@pytest.fixture
def valid_config(tmp_path: Path) -> dict[str, Any]:
    """Return a minimal valid configuration."""
    return {
        "auth": {
            "domain": TENANT,
            "client_id": "test-client-id",
            "audience": f"https://{TENANT}/api/v2/",
            "scopes": ["offline_access", "read:clients"],
        },
        "logging": {"log_dir": str(tmp_path / "logs"), "log_level": "INFO"},
    }


@pytest.fixture
def config_path(tmp_path: Path, valid_config: dict[str, Any]) -> Iterator[Path]:
    """Write a valid config file and point every command module at it."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps(valid_config, indent=2))
    with (
        patch("mcp_device_auth.cli.commands.auth.get_config_path", return_value=path),
        patch("mcp_device_auth.cli.commands.config.get_config_path", return_value=path),
        patch("mcp_device_auth.cli.commands.init.get_config_path", return_value=path),
    ):
        yield path


@pytest.fixture
def missing_config_path(tmp_path: Path) -> Iterator[Path]:
    """Point every command module at a config file that does not exist."""
    path = tmp_path / "absent" / "config.json"
    with (
        patch("mcp_device_auth.cli.commands.auth.get_config_path", return_value=path),
        patch("mcp_device_auth.cli.commands.config.get_config_path", return_value=path),
        patch("mcp_device_auth.cli.commands.init.get_config_path", return_value=path),
    ):
        yield path


def _stored_record(
    store: SecureCredentialStore,
    expires_in: timedelta = timedelta(hours=2),
    scopes: frozenset[str] = frozenset({"offline_access", "read:clients"}),
    refresh_token: str | None = "refresh-token",
) -> TokenRecord:
    record = TokenRecord(
        access_token="stored-access-token",
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) + expires_in,
        tenant=TENANT,
        granted_scopes=scopes,
    )
    assert store.set_many(record.to_entries())
    return record


class TestVersion:
    """Tests for --version flag."""

    def test_version_flag_shows_version(self, runner: CliRunner) -> None:
        """Given --version flag, returns version string."""
        # Act
        result = runner.invoke(cli, ["--version"])

        # Assert
        assert result.exit_code == 0
        assert f"mcp-device-auth {__version__}" in result.output

    def test_short_version_flag(self, runner: CliRunner) -> None:
        """Given -v flag, returns version string."""
        result = runner.invoke(cli, ["-v"])

        assert result.exit_code == 0
        assert "mcp-device-auth" in result.output


class TestHelp:
    """Tests for help output."""

    def test_root_help_shows_commands(self, runner: CliRunner) -> None:
        """Given --help, shows available commands and quick start."""
        # Act
        result = runner.invoke(cli, ["--help"])

        # Assert
        assert result.exit_code == 0
        for command in ("auth", "config", "init"):
            assert command in result.output
        assert "Quick Start" in result.output

    def test_no_command_shows_help(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, [])

        assert result.exit_code == 0
        assert "Usage" in result.output

    def test_auth_help_lists_subcommands(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["auth", "-h"])

        assert result.exit_code == 0
        for command in ("login", "logout", "status", "token", "check"):
            assert command in result.output


class TestAuthLogin:
    """Tests for auth login."""

    def test_successful_login_reports_credential(self, runner: CliRunner, config_path: Path) -> None:
        """Given the device flow succeeds, the code is shown and the credential summarized."""
        # Arrange
        captured: dict[str, Any] = {}

        async def fake_run_device_flow(config, store, display, **kwargs):
            captured.update(kwargs)
            display(
                DeviceGrantSession(
                    device_code="dev-code",
                    user_code="ABCD-EFGH",
                    verification_uri=f"https://{TENANT}/activate",
                    interval_seconds=5,
                    expires_in_seconds=900,
                )
            )
            kwargs["on_progress"](
                PollProgress(
                    state=PollState.POLLING, attempt=1, interval_seconds=5, waits=0, elapsed_seconds=0.1
                )
            )
            record = _stored_record(store, expires_in=timedelta(hours=24))
            return LoginResult(record=record, stored=True)

        # Act
        with patch("mcp_device_auth.cli.commands.auth.run_device_flow", fake_run_device_flow):
            result = runner.invoke(cli, ["auth", "login", "--no-browser"])

        # Assert
        assert result.exit_code == 0, result.output
        assert "ABCD-EFGH" in result.output
        assert "Authentication successful!" in result.output
        assert f"Tenant: {TENANT}" in result.output
        assert "Refresh token: Yes" in result.output
        assert "Stored in:" in result.output
        assert captured["open_browser"] is False
        assert captured["requested_scopes"] == frozenset({"offline_access", "read:clients"})

    def test_extra_scopes_requested_and_missing_ones_reported(self, runner: CliRunner, config_path: Path) -> None:
        """Given --scope values the server does not grant, a warning lists them."""
        # Arrange
        async def fake_run_device_flow(config, store, display, **kwargs):
            assert "update:clients" in kwargs["requested_scopes"]
            return LoginResult(record=_stored_record(store), stored=True)

        # Act
        with patch("mcp_device_auth.cli.commands.auth.run_device_flow", fake_run_device_flow):
            result = runner.invoke(cli, ["auth", "login", "--no-browser", "--scope", "update:clients"])

        # Assert
        assert result.exit_code == 0, result.output
        assert "Not granted: update:clients" in result.output

    def test_unsaved_credential_warns(self, runner: CliRunner, config_path: Path) -> None:
        async def fake_run_device_flow(config, store, display, **kwargs):
            record = TokenRecord(
                access_token="a", expires_at=datetime.now(timezone.utc) + timedelta(hours=1), tenant=TENANT
            )
            return LoginResult(record=record, stored=False)

        with patch("mcp_device_auth.cli.commands.auth.run_device_flow", fake_run_device_flow):
            result = runner.invoke(cli, ["auth", "login", "--no-browser"])

        assert result.exit_code == 0
        assert "could not be saved to the keychain" in result.output

    @pytest.mark.parametrize(
        "error,expected",
        [
            (DeviceFlowExpiredError("Device code expired."), "Authentication timed out"),
            (DeviceFlowDeniedError("Authorization was denied by user."), "Authentication was denied."),
        ],
    )
    def test_failed_flow_exits_with_auth_code(
        self, runner: CliRunner, config_path: Path, error: Exception, expected: str
    ) -> None:
        """Given the flow ends without a credential, the command exits 13."""
        # Arrange
        async def fake_run_device_flow(config, store, display, **kwargs):
            raise error

        # Act
        with patch("mcp_device_auth.cli.commands.auth.run_device_flow", fake_run_device_flow):
            result = runner.invoke(cli, ["auth", "login", "--no-browser"])

        # Assert
        assert result.exit_code == 13
        assert expected in result.output

    def test_client_credentials_secret_from_environment(self, runner: CliRunner, config_path: Path) -> None:
        """Given --client-credentials and the secret in the environment, no browser flow runs."""
        # Arrange
        captured: dict[str, Any] = {}

        async def fake_client_credentials(config, store, client_secret, **kwargs):
            captured["client_secret"] = client_secret
            record = _stored_record(store, refresh_token=None, scopes=frozenset({"read:clients"}))
            return LoginResult(record=record, stored=True)

        async def unexpected_device_flow(*args, **kwargs):
            raise AssertionError("device flow must not run")

        # Act
        with (
            patch("mcp_device_auth.cli.commands.auth.run_client_credentials_flow", fake_client_credentials),
            patch("mcp_device_auth.cli.commands.auth.run_device_flow", unexpected_device_flow),
        ):
            result = runner.invoke(
                cli, ["auth", "login", "--client-credentials"], env={CLIENT_SECRET_ENV_VAR: "env-secret"}
            )

        # Assert
        assert result.exit_code == 0, result.output
        assert captured["client_secret"] == "env-secret"
        assert "Authentication successful!" in result.output
        assert "Refresh token: No" in result.output
        assert "Not granted" not in result.output
        assert "env-secret" not in result.output

    def test_client_credentials_secret_prompted_hidden(self, runner: CliRunner, config_path: Path) -> None:
        """Given no secret in the environment, it is prompted for without echo."""
        # Arrange
        captured: dict[str, Any] = {}

        async def fake_client_credentials(config, store, client_secret, **kwargs):
            captured["client_secret"] = client_secret
            return LoginResult(record=_stored_record(store, refresh_token=None), stored=True)

        # Act
        with patch("mcp_device_auth.cli.commands.auth.run_client_credentials_flow", fake_client_credentials):
            result = runner.invoke(
                cli,
                ["auth", "login", "--client-credentials"],
                input="typed-secret\n",
                env={CLIENT_SECRET_ENV_VAR: None},
            )

        # Assert
        assert result.exit_code == 0, result.output
        assert captured["client_secret"] == "typed-secret"
        assert "Client secret" in result.output
        assert "typed-secret" not in result.output

    def test_client_credentials_rejected_exits_13(self, runner: CliRunner, config_path: Path) -> None:
        async def fake_client_credentials(config, store, client_secret, **kwargs):
            raise ClientCredentialsError(
                "Client credentials authentication failed: Unauthorized", error="access_denied"
            )

        with patch("mcp_device_auth.cli.commands.auth.run_client_credentials_flow", fake_client_credentials):
            result = runner.invoke(
                cli, ["auth", "login", "--client-credentials"], env={CLIENT_SECRET_ENV_VAR: "wrong"}
            )

        assert result.exit_code == 13
        assert "Unauthorized" in result.output

    def test_client_credentials_with_scope_is_usage_error(self, runner: CliRunner, config_path: Path) -> None:
        result = runner.invoke(cli, ["auth", "login", "--client-credentials", "--scope", "read:users"])

        assert result.exit_code == 2
        assert "--client-credentials" in result.output

    def test_missing_config_exits_with_config_code(self, runner: CliRunner, missing_config_path: Path) -> None:
        """Given no config file, login exits 16 with an init hint."""
        result = runner.invoke(cli, ["auth", "login"])

        assert result.exit_code == 16
        assert "mcp-device-auth init" in result.output


class TestAuthLogout:
    """Tests for auth logout."""

    def test_removes_all_items(
        self, runner: CliRunner, config_path: Path, store: SecureCredentialStore, memory_keyring
    ) -> None:
        """Given a stored credential, logout removes every item."""
        # Arrange
        _stored_record(store)

        # Act
        result = runner.invoke(cli, ["auth", "logout", "--no-revoke"])

        # Assert
        assert result.exit_code == 0, result.output
        assert "Successfully removed access token" in result.output
        assert memory_keyring.passwords == {}
        assert "auth login' to authenticate again" in result.output

    def test_nothing_stored(self, runner: CliRunner, missing_config_path: Path) -> None:
        result = runner.invoke(cli, ["auth", "logout"])

        assert result.exit_code == 0
        assert "No authentication data was found" in result.output

    def test_delete_failure_lists_item_and_exits_nonzero(
        self, runner: CliRunner, config_path: Path, store: SecureCredentialStore, memory_keyring
    ) -> None:
        """Given a keychain delete error, the item and manual cleanup hint are shown."""
        # Arrange
        _stored_record(store)
        memory_keyring.fail_delete.add("AUTH0_REFRESH_TOKEN")

        # Act
        result = runner.invoke(cli, ["auth", "logout", "--no-revoke"])

        # Assert
        assert result.exit_code == 1
        assert "refresh token: delete of AUTH0_REFRESH_TOKEN refused" in result.output
        assert "'auth0-mcp'" in result.output


class TestAuthStatus:
    """Tests for auth status."""

    def test_not_authenticated_json(self, runner: CliRunner, config_path: Path) -> None:
        # Act
        result = runner.invoke(cli, ["auth", "status", "--json"])

        # Assert
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["configured"] is True
        assert data["authenticated"] is False
        assert data["status"] == "not_authenticated"
        assert data["storage"]["service"] == "auth0-mcp"

    def test_authenticated_json(self, runner: CliRunner, config_path: Path, store: SecureCredentialStore) -> None:
        """Given a valid stored credential, status reports tenant and scopes."""
        # Arrange
        _stored_record(store)

        # Act
        result = runner.invoke(cli, ["auth", "status", "--json"])

        # Assert
        data = json.loads(result.output)
        assert data["status"] == "authenticated"
        assert data["token"]["tenant"] == TENANT
        assert data["token"]["has_refresh_token"] is True
        assert data["token"]["granted_scopes"] == ["offline_access", "read:clients"]

    def test_expired_token_formatted(
        self, runner: CliRunner, config_path: Path, store: SecureCredentialStore
    ) -> None:
        _stored_record(store, expires_in=timedelta(hours=-1))

        result = runner.invoke(cli, ["auth", "status"])

        assert result.exit_code == 0
        assert "Status: Token expired" in result.output
        assert "refreshed automatically" in result.output

    def test_unconfigured_suggests_init(self, runner: CliRunner, missing_config_path: Path) -> None:
        result = runner.invoke(cli, ["auth", "status"])

        assert result.exit_code == 0
        assert "Status: Not authenticated" in result.output
        assert "mcp-device-auth init" in result.output


class TestAuthToken:
    """Tests for auth token."""

    def test_prints_valid_token(self, runner: CliRunner, config_path: Path, store: SecureCredentialStore) -> None:
        _stored_record(store)

        result = runner.invoke(cli, ["auth", "token"])

        assert result.exit_code == 0
        assert result.output.strip() == "stored-access-token"

    def test_not_authenticated_exits_13(self, runner: CliRunner, config_path: Path) -> None:
        result = runner.invoke(cli, ["auth", "token"])

        assert result.exit_code == 13
        assert "Not authenticated" in result.output


class TestAuthCheck:
    """Tests for auth check."""

    def test_granted_scopes_allowed(self, runner: CliRunner, config_path: Path, store: SecureCredentialStore) -> None:
        _stored_record(store)

        result = runner.invoke(cli, ["auth", "check", "read:clients", "--operation", "list_clients"])

        assert result.exit_code == 0
        assert "Operation 'list_clients' is authorized." in result.output

    def test_missing_scope_exits_1(self, runner: CliRunner, config_path: Path, store: SecureCredentialStore) -> None:
        """Given a scope the credential lacks, the decision names it and exits 1."""
        # Arrange
        _stored_record(store)

        # Act
        result = runner.invoke(cli, ["auth", "check", "read:clients", "update:clients", "--json"])

        # Assert
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["outcome"] == "missing_scopes"
        assert data["missing_scopes"] == ["update:clients"]

    def test_not_authenticated_exits_13(self, runner: CliRunner, config_path: Path) -> None:
        result = runner.invoke(cli, ["auth", "check", "read:clients"])

        assert result.exit_code == 13
        assert "auth login" in result.output

    def test_malformed_scope_is_usage_error(self, runner: CliRunner, config_path: Path) -> None:
        result = runner.invoke(cli, ["auth", "check", "clients"])

        assert result.exit_code == 2
        assert "expected resource:action" in result.output


class TestInit:
    """Tests for init."""

    def test_non_interactive_writes_config(self, runner: CliRunner, missing_config_path: Path) -> None:
        """Given --non-interactive with domain and client id, config is saved with defaults filled in."""
        # Act
        result = runner.invoke(
            cli,
            [
                "init",
                "--non-interactive",
                "--domain",
                "acme.us.auth0.com",
                "--client-id",
                "cli-client",
                "--scope",
                "read:clients",
                "--log-level",
                "debug",
            ],
        )

        # Assert
        assert result.exit_code == 0, result.output
        saved = json.loads(missing_config_path.read_text())
        assert saved["auth"]["domain"] == "acme.us.auth0.com"
        assert saved["auth"]["audience"] == "https://acme.us.auth0.com/api/v2/"
        assert saved["auth"]["scopes"] == ["offline_access", "read:clients"]
        assert saved["logging"]["log_level"] == "DEBUG"
        assert "Configuration saved to" in result.output

    def test_non_interactive_requires_domain_and_client_id(
        self, runner: CliRunner, missing_config_path: Path
    ) -> None:
        result = runner.invoke(cli, ["init", "--non-interactive", "--domain", "acme.us.auth0.com"])

        assert result.exit_code == 1
        assert "--domain and --client-id are required" in result.output
        assert not missing_config_path.exists()

    def test_existing_config_needs_force(self, runner: CliRunner, config_path: Path) -> None:
        result = runner.invoke(
            cli, ["init", "--non-interactive", "--domain", "other.auth0.com", "--client-id", "c"]
        )

        assert result.exit_code == 1
        assert "--force" in result.output

    def test_changed_domain_with_stored_token_warns(
        self, runner: CliRunner, config_path: Path, store: SecureCredentialStore
    ) -> None:
        """Given a stored credential and a new domain, init warns to re-authenticate."""
        # Arrange
        _stored_record(store)

        # Act
        result = runner.invoke(
            cli,
            ["init", "--non-interactive", "--force", "--domain", "other.auth0.com", "--client-id", "c"],
        )

        # Assert
        assert result.exit_code == 0, result.output
        assert "Authorization settings changed" in result.output

    def test_interactive_prompts(self, runner: CliRunner, missing_config_path: Path) -> None:
        """Given interactive mode, empty answers are re-prompted and the audience default is offered."""
        # Act
        result = runner.invoke(cli, ["init"], input="\nacme.auth0.com\ncli-client\n\n")

        # Assert
        assert result.exit_code == 0, result.output
        assert "This field is required." in result.output
        saved = json.loads(missing_config_path.read_text())
        assert saved["auth"]["audience"] == "https://acme.auth0.com/api/v2/"


class TestConfigCommands:
    """Tests for config show and config path."""

    def test_show_json_includes_endpoints(self, runner: CliRunner, config_path: Path) -> None:
        # Act
        result = runner.invoke(cli, ["config", "show", "--json"])

        # Assert
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["auth"]["domain"] == TENANT
        assert data["_computed"]["endpoints"]["token"] == f"https://{TENANT}/oauth/token"
        assert data["_computed"]["config_file"] == str(config_path)

    def test_show_formatted(self, runner: CliRunner, config_path: Path) -> None:
        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert f"domain: {TENANT}" in result.output
        assert f"device_authorization: https://{TENANT}/oauth/device/code" in result.output

    def test_show_missing_config(self, runner: CliRunner, missing_config_path: Path) -> None:
        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_path_prints_location(self, runner: CliRunner, missing_config_path: Path) -> None:
        result = runner.invoke(cli, ["config", "path"])

        assert result.exit_code == 0
        assert str(missing_config_path) in result.output
        assert "file does not exist" in result.output

    def test_show_does_not_expose_credential(
        self, runner: CliRunner, config_path: Path, store: SecureCredentialStore
    ) -> None:
        """Given a stored credential, config show neither prints nor alters it."""
        _stored_record(store)

        result = runner.invoke(cli, ["config", "show", "--json"])

        assert "stored-access-token" not in result.output
        assert store.get(CredentialKey.TOKEN) == "stored-access-token"
