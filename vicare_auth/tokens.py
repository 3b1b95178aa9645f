"""Token data structures shared by the flow, the exchange client and the
authorized request wrapper.

``AuthorizationRecord`` is the transient result of one token endpoint call.
``CredentialState`` is the long-lived holder consulted by every authorized
request; only successful token endpoint responses (or the explicit consumer
setters) write to it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationRecord:
    """Token endpoint response from the identity provider.

    Attributes:
        access_token: The access token string
        refresh_token: Refresh token, if the provider returned one
        expires_in: Lifetime of the access token in seconds
        token_type: Token type (typically "Bearer")
        scope: Space-separated list of granted scopes
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> "AuthorizationRecord":
        """Create a record from the token endpoint JSON body.

        Raises:
            KeyError: If the response carries no access_token
        """
        expires_in = response.get("expires_in")

        return cls(
            access_token=response["access_token"],
            refresh_token=response.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            token_type=response.get("token_type", "Bearer"),
            scope=response.get("scope"),
        )

    def expires_at(self, now: datetime | None = None) -> datetime | None:
        """Absolute expiry time derived from expires_in."""
        if self.expires_in is None:
            return None
        return (now or datetime.now(timezone.utc)) + timedelta(seconds=self.expires_in)


@dataclass
class CredentialState:
    """Current access and refresh tokens for the single session."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def apply(self, record: AuthorizationRecord, rotate_refresh_token: bool = True) -> None:
        """Store the tokens from a successful token endpoint response.

        Args:
            record: The token endpoint response
            rotate_refresh_token: Whether a refresh token in the record
                replaces the current one
        """
        self.access_token = record.access_token
        self.expires_at = record.expires_at()

        if rotate_refresh_token and record.refresh_token:
            self.refresh_token = record.refresh_token

    def has_access_token(self) -> bool:
        return bool(self.access_token)

    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, buffer_seconds: int = 30) -> bool:
        """Check if the access token is known to be expired.

        A missing expiry is treated as valid; the API answers with an
        expired-token error body in that case and the wrapper refreshes.
        """
        if self.expires_at is None:
            return False

        return datetime.now(timezone.utc) >= self.expires_at - timedelta(seconds=buffer_seconds)

    def get_auth_header(self) -> str:
        """Authorization header value for the current access token."""
        return f"Bearer {self.access_token}"
