"""Shared fixtures for mcp-device-auth tests.

Provides:
- An in-memory keyring backend installed for every test, so no test
  ever touches the real OS keychain
- OIDC configuration and access-token (JWT) factories
- An httpx.MockTransport-based client that replays scripted responses
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import jwt
import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from mcp_device_auth.config import OIDCConfig
from mcp_device_auth.security.credential_store import SecureCredentialStore

TENANT = "tenant.example.auth0.com"
MANAGEMENT_AUDIENCE = f"https://{TENANT}/api/v2/"
TEST_SIGNING_SECRET = "test-signing-secret-for-hs256-tokens-0123456789"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps passwords in a dict.

    Individual item names can be made to fail on write or delete to
    exercise keychain error handling.
    """

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}
        self.fail_set: set[str] = set()
        self.fail_get: set[str] = set()
        self.fail_delete: set[str] = set()

    def get_password(self, service: str, username: str) -> str | None:
        if username in self.fail_get:
            raise KeyringError(f"read of {username} refused")
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        if username in self.fail_set:
            raise KeyringError(f"write of {username} refused")
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        if username in self.fail_delete:
            raise KeyringError(f"delete of {username} refused")
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("Password not found") from None


@pytest.fixture(autouse=True)
def memory_keyring() -> MemoryKeyring:
    """Install a fresh in-memory keyring as the active backend."""
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    return backend


@pytest.fixture
def store(memory_keyring: MemoryKeyring) -> SecureCredentialStore:
    """Credential store bound to the in-memory keyring."""
    return SecureCredentialStore(backend=memory_keyring)


@pytest.fixture
def oidc_config() -> OIDCConfig:
    """Valid OIDC configuration for tests."""
    return OIDCConfig(
        domain=TENANT,
        client_id="test-client-id",
        audience=MANAGEMENT_AUDIENCE,
        scopes=["offline_access", "read:clients"],
    )


@pytest.fixture
def now() -> datetime:
    """Fixed UTC time used as the clock in lifecycle tests."""
    return FIXED_NOW


@pytest.fixture
def make_access_token() -> Callable[..., str]:
    """Factory for HS256 access tokens with a management API audience."""

    def _make(audience: str | list[str] | None = None, **claims: object) -> str:
        payload: dict[str, object] = {
            "iss": f"https://{TENANT}/",
            "sub": "auth0|user-123",
            "aud": audience if audience is not None else [MANAGEMENT_AUDIENCE, f"https://{TENANT}/userinfo"],
            "iat": int(FIXED_NOW.timestamp()),
            "exp": int((FIXED_NOW + timedelta(hours=24)).timestamp()),
            **claims,
        }
        return jwt.encode(payload, TEST_SIGNING_SECRET, algorithm="HS256")

    return _make


class ScriptedServer:
    """Replays queued responses and records the requests it receives.

    Queue items are either a (status_code, json_body) tuple, a raw
    httpx.Response, or an exception instance to raise.
    """

    def __init__(self) -> None:
        self.queue: list[tuple[int, object] | httpx.Response | Exception] = []
        self.requests: list[httpx.Request] = []

    def add(self, status_code: int, body: object) -> ScriptedServer:
        self.queue.append((status_code, body))
        return self

    def add_error(self, error: Exception) -> ScriptedServer:
        self.queue.append(error)
        return self

    def add_response(self, response: httpx.Response) -> ScriptedServer:
        self.queue.append(response)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.queue:
            raise AssertionError(f"Unexpected request to {request.url}")
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        status_code, body = item
        return httpx.Response(status_code, content=json.dumps(body), headers={"Content-Type": "application/json"})

    def form(self, index: int = -1) -> dict[str, str]:
        """Decoded form body of a recorded request."""
        parsed = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in parsed.items()}

    @property
    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def server() -> ScriptedServer:
    """Scripted authorization server."""
    return ScriptedServer()


@pytest.fixture
async def http_client(server: ScriptedServer) -> AsyncIterator[httpx.AsyncClient]:
    """httpx client routed to the scripted server."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(server.handler)) as client:
        yield client


class FakeSleep:
    """Records requested waits instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()
