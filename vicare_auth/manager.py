"""High-level session manager for vicare-auth.

Wires credential state, token exchange, the authorization flow, settings
storage and the authorized request wrapper into one object. This is the
interface used by the CLI and by downstream API consumers.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx

from .client import AuthorizedClient
from .config import AuthConfig
from .exchange import TokenExchangeClient, TokenRefreshError
from .flow import OAuthFlow
from .store import SettingsStore
from .tokens import AuthorizationRecord, CredentialState

logger = logging.getLogger(__name__)


@dataclass
class AuthStatus:
    """Authentication status of the current session.

    Attributes:
        settings_path: Where the refresh token is persisted
        has_stored_refresh_token: Whether the settings file holds a refresh token
        has_access_token: Whether the session currently holds an access token
        expires_at: When the access token expires (ISO format string)
    """

    settings_path: str
    has_stored_refresh_token: bool = False
    has_access_token: bool = False
    expires_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "settings_path": self.settings_path,
            "has_stored_refresh_token": self.has_stored_refresh_token,
            "has_access_token": self.has_access_token,
            "expires_at": self.expires_at,
        }


class AuthManager:
    """Owns the single credential set of a vicare-auth session.

    Usage:
        async with AuthManager(config, on_status=print) as manager:
            await manager.login()
            data = await manager.get_json(url)
    """

    def __init__(
        self,
        config: AuthConfig,
        on_status: Callable[[str], None] | None = None,
        on_authorization_url: Callable[[str], None] | None = None,
        token_http_client: httpx.AsyncClient | None = None,
        api_http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the manager.

        Args:
            config: Loaded configuration
            on_status: Callback for status messages
            on_authorization_url: Callback receiving the authorization URL
            token_http_client: Optional client for the token endpoint
            api_http_client: Optional client for authorized API calls
        """
        self.config = config
        self.credentials = CredentialState()
        self.store = SettingsStore(Path(config.settings_path))
        self.exchange = TokenExchangeClient(
            config.client_id, self.credentials, http_client=token_http_client
        )
        self.flow = OAuthFlow(
            config.client_id,
            self.credentials,
            self.exchange,
            self.store,
            scope=config.scope,
            port=config.callback_port,
            callback_timeout=config.callback_timeout,
            on_status=on_status,
            on_authorization_url=on_authorization_url,
        )
        self.client = AuthorizedClient(
            self.credentials, self.exchange, http_client=api_http_client
        )

    # Consumer-facing credential access

    def get_access_token(self) -> str | None:
        return self.credentials.access_token

    def set_access_token(self, access_token: str) -> None:
        self.credentials.access_token = access_token

    def set_refresh_token(self, refresh_token: str) -> None:
        self.credentials.refresh_token = refresh_token

    async def authorized_request(self, url: str, method: str = "GET", **kwargs: Any) -> httpx.Response:
        return await self.client.authorized_request(url, method, **kwargs)

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        return await self.client.get_json(url, **kwargs)

    # Session lifecycle

    def load_stored_refresh_token(self) -> bool:
        """Copy a persisted refresh token into the credential state.

        Returns:
            True if a refresh token was found
        """
        token = self.store.get_refresh_token()
        if token is None:
            return False
        self.credentials.refresh_token = token
        return True

    async def login(self, host: str | None = None, force: bool = False) -> AuthorizationRecord:
        """Make sure the session holds a valid access token.

        A stored refresh token is tried first; the interactive flow runs when
        there is none, when it was rejected, or when ``force`` is set.

        Args:
            host: Address for the redirect listener (default: config, then detection)
            force: Skip the stored refresh token and always run the browser flow

        Returns:
            AuthorizationRecord of the refresh or code exchange
        """
        if not force and self.load_stored_refresh_token():
            try:
                return await self.exchange.refresh()
            except TokenRefreshError as e:
                logger.warning(f"Stored refresh token rejected, re-authenticating: {e}")
                self.credentials.refresh_token = None

        return await self.flow.start_auth(host or self.config.callback_host)

    async def refresh(self) -> AuthorizationRecord:
        """Refresh the access token with the stored refresh token."""
        if not self.credentials.has_refresh_token():
            self.load_stored_refresh_token()
        return await self.exchange.refresh()

    def get_auth_status(self) -> AuthStatus:
        expires_at = self.credentials.expires_at
        return AuthStatus(
            settings_path=str(self.store.path),
            has_stored_refresh_token=self.store.get_refresh_token() is not None,
            has_access_token=self.credentials.has_access_token(),
            expires_at=expires_at.isoformat() if expires_at else None,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.exchange.aclose()

    async def __aenter__(self) -> "AuthManager":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
