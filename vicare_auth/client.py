"""Authorized HTTP requests against the Viessmann API.

Every request carries the current access token. When the API answers with
an expired-token error body, the token is refreshed through the exchange
client and the request is sent again, up to ``MAX_ATTEMPTS`` sends in total.
"""

import json
import logging
from typing import Any

import httpx

from .exchange import DEFAULT_HTTP_TIMEOUT, TokenExchangeClient
from .tokens import CredentialState

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

EXPIRED_TOKEN_ERROR = "EXPIRED TOKEN"


class AuthorizedRequestError(Exception):
    """Error issuing an authorized request."""

    pass


class RetryExhaustedError(AuthorizedRequestError):
    """The token kept expiring after every refresh."""

    pass


class ApiError(AuthorizedRequestError):
    """Non-2xx API response that is not an expired token.

    Attributes:
        status_code: HTTP status of the response
        body: The API's error payload (parsed JSON or raw text)
    """

    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self.body = body
        detail = json.dumps(body, indent=2) if isinstance(body, (dict, list)) else str(body)
        super().__init__(f"API request failed (HTTP {status_code}): {detail}")


def is_expired_token_body(body: Any) -> bool:
    """Check whether an API error body reports an expired access token.

    The API reports this either as ``{"error": "EXPIRED TOKEN"}`` or as
    ``{"errorType": "EXPIRED TOKEN", ...}``.
    """
    if not isinstance(body, dict):
        return False
    return EXPIRED_TOKEN_ERROR in (body.get("error"), body.get("errorType"))


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class AuthorizedClient:
    """Decorates HTTP calls with the bearer token and refreshes on expiry.

    Usage:
        client = AuthorizedClient(credentials, exchange)
        response = await client.authorized_request(url)
    """

    def __init__(
        self,
        credentials: CredentialState,
        exchange_client: TokenExchangeClient,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.credentials = credentials
        self.exchange_client = exchange_client

        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)
        self._owns_http = http_client is None

    async def authorized_request(
        self,
        url: str,
        method: str = "GET",
        *,
        headers: dict[str, str] | None = None,
        attempt: int = 0,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request with the current access token.

        The token is refreshed first when there is none yet, or when it is
        known to expire within the next 30 seconds.

        Args:
            url: Request URL
            method: HTTP method
            headers: Extra headers; they override the defaults except Authorization
            attempt: Number of sends already spent on this call
            **kwargs: Passed through to ``httpx.AsyncClient.request``

        Returns:
            The response. Error responses other than an expired token are
            returned unchanged.

        Raises:
            RetryExhaustedError: If ``MAX_ATTEMPTS`` sends all hit an expired token
            TokenRefreshError: If the provider rejected the refresh token
            MissingRefreshTokenError: If a refresh is needed but no refresh token is known
        """
        if attempt >= MAX_ATTEMPTS:
            raise RetryExhaustedError(
                f"Could not refresh authentication token after {MAX_ATTEMPTS} attempts"
            )

        if not self.credentials.has_access_token():
            logger.debug("No access token yet, refreshing before the request")
            await self.exchange_client.refresh()
        elif self.credentials.is_expired() and self.credentials.has_refresh_token():
            logger.debug("Access token is about to expire, refreshing before the request")
            await self.exchange_client.refresh()

        while True:
            sent_token = self.credentials.access_token
            request_headers = {
                "Accept": "application/json",
                **(headers or {}),
                "Authorization": self.credentials.get_auth_header(),
            }

            response = await self._http.request(method, url, headers=request_headers, **kwargs)
            attempt += 1

            if not is_expired_token_body(_json_or_text(response)):
                return response

            if attempt >= MAX_ATTEMPTS:
                raise RetryExhaustedError(
                    f"Could not refresh authentication token after {MAX_ATTEMPTS} attempts"
                )

            if self.credentials.access_token == sent_token:
                logger.info("Access token expired, refreshing")
                await self.exchange_client.refresh()
            else:
                logger.debug("Access token was already refreshed by another request")

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """Authorized GET returning the decoded JSON payload.

        Returns:
            The ``data`` member of the body when present, else the whole body

        Raises:
            ApiError: If the API answers with a non-2xx status
        """
        response = await self.authorized_request(url, "GET", **kwargs)
        body = _json_or_text(response)

        if not response.is_success:
            raise ApiError(response.status_code, body)

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def aclose(self) -> None:
        """Close the owned HTTP client."""
        if self._owns_http:
            await self._http.aclose()
