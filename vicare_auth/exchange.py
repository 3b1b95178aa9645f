"""Token endpoint calls: authorization code exchange and token refresh.

Both calls go through a plain ``httpx.AsyncClient`` owned by this module.
They never pass through :class:`vicare_auth.client.AuthorizedClient`, so a
refresh can never trigger another refresh.
"""

import asyncio
import json
import logging
from typing import Any

import httpx

from .tokens import AuthorizationRecord, CredentialState

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "https://iam.viessmann.com/idp/v3/token"

DEFAULT_HTTP_TIMEOUT = 30.0


class TokenExchangeError(Exception):
    """Error talking to the token endpoint."""

    pass


class MissingRefreshTokenError(TokenExchangeError):
    """A refresh was requested before any refresh token was known."""

    pass


class _TokenEndpointError(TokenExchangeError):
    """Non-2xx token endpoint response.

    Attributes:
        status_code: HTTP status returned by the provider
        body: The provider's error payload (parsed JSON or raw text)
    """

    action = "Token request"

    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self.body = body
        if isinstance(body, (dict, list)):
            detail = json.dumps(body, indent=2)
        else:
            detail = str(body)
        super().__init__(f"{self.action} failed (HTTP {status_code}): {detail}")


class AuthorizationExchangeError(_TokenEndpointError):
    """The provider rejected the authorization code exchange."""

    action = "Authorization code exchange"


class TokenRefreshError(_TokenEndpointError):
    """The provider rejected the refresh token (expired or revoked)."""

    action = "Token refresh"


def _response_body(response: httpx.Response) -> Any:
    """Parsed JSON body if possible, raw text otherwise."""
    try:
        return response.json()
    except ValueError:
        return response.text


class TokenExchangeClient:
    """Performs the two token endpoint operations and updates CredentialState.

    Concurrent ``refresh()`` calls share a single in-flight request.

    Usage:
        exchange = TokenExchangeClient(client_id, credentials)
        record = await exchange.exchange_code(code, pkce.verifier, redirect_uri)
        await exchange.refresh()
    """

    def __init__(
        self,
        client_id: str,
        credentials: CredentialState,
        http_client: httpx.AsyncClient | None = None,
        token_endpoint: str = TOKEN_ENDPOINT,
    ):
        """Initialize the exchange client.

        Args:
            client_id: OAuth client identifier
            credentials: Credential state updated on success
            http_client: Optional unauthenticated HTTP client. When omitted an
                owned client is created and closed by aclose().
            token_endpoint: Token endpoint URL
        """
        self.client_id = client_id
        self.credentials = credentials
        self.token_endpoint = token_endpoint

        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)
        self._owns_http = http_client is None
        self._inflight_refresh: asyncio.Task[AuthorizationRecord] | None = None

    async def _post(self, form: dict[str, str]) -> httpx.Response:
        try:
            return await self._http.post(
                self.token_endpoint,
                data=form,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
            )
        except httpx.RequestError as e:
            raise TokenExchangeError(f"Network error calling token endpoint: {e}") from e

    async def exchange_code(
        self,
        code: str,
        verifier: str,
        redirect_uri: str,
    ) -> AuthorizationRecord:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback
            verifier: PKCE code verifier of the same attempt
            redirect_uri: The redirect URI used in the authorize request

        Returns:
            AuthorizationRecord from the token endpoint

        Raises:
            AuthorizationExchangeError: If the provider answers with a non-2xx status
            TokenExchangeError: On network errors or an unusable response
        """
        logger.debug("Exchanging authorization code for access token...")

        response = await self._post(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
                "code_verifier": verifier,
                "code": code,
            }
        )

        if not response.is_success:
            error = AuthorizationExchangeError(response.status_code, _response_body(response))
            logger.error(f"Error exchanging code for token: {error}")
            raise error

        record = self._parse_record(response)
        logger.debug("Successfully exchanged code for access token.")
        return record

    async def refresh(self, refresh_token: str | None = None) -> AuthorizationRecord:
        """Obtain a new access token using the refresh token.

        If a refresh is already running, wait for it instead of issuing a
        second request.

        Args:
            refresh_token: Token to use; defaults to the one in CredentialState

        Returns:
            AuthorizationRecord from the token endpoint

        Raises:
            MissingRefreshTokenError: If no refresh token is available
            TokenRefreshError: If the provider answers with a non-2xx status
            TokenExchangeError: On network errors or an unusable response
        """
        if self._inflight_refresh is not None:
            logger.debug("Refresh already in flight, waiting for its result")
            return await asyncio.shield(self._inflight_refresh)

        token = refresh_token or self.credentials.refresh_token
        if not token:
            raise MissingRefreshTokenError("No refresh token received (yet)")

        task = asyncio.ensure_future(self._refresh(token))
        self._inflight_refresh = task
        task.add_done_callback(self._clear_inflight_refresh)
        return await asyncio.shield(task)

    def _clear_inflight_refresh(self, task: "asyncio.Task[AuthorizationRecord]") -> None:
        if self._inflight_refresh is task:
            self._inflight_refresh = None
        # Mark the exception as retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _refresh(self, refresh_token: str) -> AuthorizationRecord:
        logger.debug("Refreshing authorization ...")

        response = await self._post(
            {
                "client_id": self.client_id,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )

        if not response.is_success:
            error = TokenRefreshError(response.status_code, _response_body(response))
            logger.error(f"Error refreshing authorization: {error}")
            raise error

        record = self._parse_record(response)
        self.credentials.apply(record, rotate_refresh_token=False)
        logger.info("Successfully refreshed authorization.")
        return record

    def _parse_record(self, response: httpx.Response) -> AuthorizationRecord:
        try:
            return AuthorizationRecord.from_token_response(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise TokenExchangeError(
                f"Token endpoint returned an unusable response (HTTP {response.status_code})"
            ) from e

    async def aclose(self) -> None:
        """Close the owned HTTP client."""
        if self._owns_http:
            await self._http.aclose()
