"""Shared fixtures and utilities for vicare-auth tests."""

import asyncio
import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from vicare_auth.config import AuthConfig
from vicare_auth.exchange import TokenExchangeClient
from vicare_auth.tokens import CredentialState

TOKEN_URL = "https://iam.viessmann.com/idp/v3/token"
API_URL = "https://api.viessmann.com/iot/v1/features/installations/1/gateways/2/devices/0/features/heating.sensors.temperature.outside"


# ============================================================================
# HTTP helpers
# ============================================================================


def json_response(data: Any, status_code: int = 200) -> httpx.Response:
    """Build an httpx.Response with JSON content."""
    return httpx.Response(status_code=status_code, json=data)


def form_data(request: httpx.Request) -> dict[str, str]:
    """Decode a form-encoded request body into a flat dict."""
    parsed = parse_qs(request.content.decode("utf-8"))
    return {key: values[0] for key, values in parsed.items()}


class TokenEndpoint:
    """Scripted token endpoint for httpx.MockTransport.

    Each call pops the next response; the last one repeats. Every request is
    recorded in ``requests``.
    """

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses) or [
            json_response({"access_token": "new_access", "expires_in": 3600})
        ]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    @property
    def forms(self) -> list[dict[str, str]]:
        return [form_data(r) for r in self.requests]


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def send_raw_request(port: int, request: bytes, host: str = "127.0.0.1") -> bytes:
    """Send raw bytes to a local listener and return the full response."""
    reader, writer = await asyncio.open_connection(host, port)
    writer.write(request)
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response


async def send_get(port: int, target: str) -> bytes:
    return await send_raw_request(
        port, f"GET {target} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode()
    )


def query_of(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


class Browser:
    """Stands in for the user: follows the authorization URL with a redirect.

    Pass an instance as ``on_authorization_url``. Each call schedules a GET to
    the redirect URI found in the URL; await ``tasks`` afterwards.
    """

    def __init__(self, query: str = "code=XYZ"):
        self.query = query
        self.urls: list[str] = []
        self.tasks: list[asyncio.Task[None]] = []
        self.responses: list[bytes] = []

    def __call__(self, url: str) -> None:
        self.urls.append(url)
        port = urlsplit(query_of(url)["redirect_uri"]).port
        self.tasks.append(asyncio.create_task(self._redirect(port)))

    async def _redirect(self, port: int) -> None:
        self.responses.append(await send_get(port, f"/?{self.query}"))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def credentials() -> CredentialState:
    return CredentialState(access_token="old_access", refresh_token="stored_refresh")


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
def exchange(credentials: CredentialState, token_endpoint: TokenEndpoint) -> TokenExchangeClient:
    return TokenExchangeClient("test_client", credentials, http_client=mock_client(token_endpoint))


@pytest.fixture
def settings_path(tmp_path: Path) -> Path:
    return tmp_path / "settings.json"


@pytest.fixture
def auth_config(settings_path: Path) -> AuthConfig:
    return AuthConfig(
        client_id="test_client",
        callback_host="127.0.0.1",
        callback_port=0,
        callback_timeout=5,
        settings_path=settings_path,
    )


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Temporarily clear VICARE_* environment variables."""
    old_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("VICARE_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(old_env)
