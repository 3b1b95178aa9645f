"""OAuth authorization code flow with PKCE.

This module orchestrates one interactive authorization attempt:
1. Resolve the address the redirect listener binds to
2. Generate a PKCE pair
3. Start the redirect listener
4. Build the authorization URL and hand it to the user
5. Wait for the redirect with the authorization code
6. Exchange the code for tokens
7. Persist the refresh token
"""

import asyncio
import enum
import hmac
import logging
from typing import Callable
from urllib.parse import quote, urlencode

from .callback import DEFAULT_PORT, DEFAULT_TIMEOUT, CallbackListener, CallbackResult
from .exchange import TokenExchangeClient
from .network import detect_local_address
from .pkce import PKCEPair, generate_pkce_pair, generate_state
from .store import SettingsStore
from .tokens import AuthorizationRecord, CredentialState

logger = logging.getLogger(__name__)

AUTHORIZE_ENDPOINT = "https://iam.viessmann.com/idp/v3/authorize"

DEFAULT_SCOPE = "IoT User offline_access"


class OAuthFlowError(Exception):
    """Error during the authorization flow."""

    pass


class MissingRedirectTargetError(OAuthFlowError):
    """No address could be resolved for the redirect listener."""

    pass


class StateMismatchError(OAuthFlowError):
    """The redirect carried a state value that does not match the request."""

    pass


class FlowState(enum.Enum):
    """Progress of an authorization attempt."""

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING = "exchanging"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    code_challenge: str,
    scope: str = DEFAULT_SCOPE,
    state: str | None = None,
    authorize_endpoint: str = AUTHORIZE_ENDPOINT,
) -> str:
    """Build the authorization URL the user opens in a browser.

    Args:
        client_id: The client ID
        redirect_uri: The listener's redirect URI
        code_challenge: PKCE code challenge
        scope: Space-separated scopes to request
        state: Optional state parameter for CSRF protection
        authorize_endpoint: Authorization endpoint URL

    Returns:
        Complete authorization URL
    """
    params: dict[str, str] = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": scope,
        "response_type": "code",
        "code_challenge_method": "S256",
        "code_challenge": code_challenge,
    }

    if state:
        params["state"] = state

    # quote (not quote_plus) so spaces in the scope become %20
    return f"{authorize_endpoint}?{urlencode(params, quote_via=quote)}"


class OAuthFlow:
    """Runs the interactive authorization and fills CredentialState.

    Usage:
        flow = OAuthFlow(client_id, credentials, exchange, store, on_status=print)
        record = await flow.start_auth()
    """

    def __init__(
        self,
        client_id: str,
        credentials: CredentialState,
        exchange_client: TokenExchangeClient,
        store: SettingsStore,
        scope: str = DEFAULT_SCOPE,
        port: int = DEFAULT_PORT,
        callback_timeout: float | None = DEFAULT_TIMEOUT,
        verify_state: bool = False,
        on_status: Callable[[str], None] | None = None,
        on_authorization_url: Callable[[str], None] | None = None,
        address_resolver: Callable[[], str | None] = detect_local_address,
    ):
        """Initialize the flow.

        Args:
            client_id: OAuth client identifier
            credentials: Credential state filled on success
            exchange_client: Client for the token endpoint
            store: Settings store receiving the refresh token
            scope: Scopes to request
            port: Redirect listener port
            callback_timeout: Seconds to wait for the redirect (None = no limit)
            verify_state: Send a state parameter and require it on the redirect
            on_status: Callback receiving status messages, including the URL to open
            on_authorization_url: Callback receiving the bare URL, e.g. to open a browser
            address_resolver: Fallback used when start_auth() gets no address
        """
        self.client_id = client_id
        self.credentials = credentials
        self.exchange_client = exchange_client
        self.store = store
        self.scope = scope
        self.port = port
        self.callback_timeout = callback_timeout
        self.verify_state = verify_state
        self.on_status = on_status or (lambda msg: None)
        self.on_authorization_url = on_authorization_url
        self.address_resolver = address_resolver

        self.state = FlowState.IDLE
        self.pkce: PKCEPair | None = None
        self.authorization_url: str | None = None

    def _emit_status(self, message: str) -> None:
        logger.info(message)
        self.on_status(message)

    def _resolve_address(self, host_address: str | None) -> str:
        address = host_address or self.address_resolver()
        if not address:
            raise MissingRedirectTargetError("Got no redirect URI: no address to listen on")
        return address

    async def start_auth(self, host_address: str | None = None) -> AuthorizationRecord:
        """Execute one complete authorization attempt.

        Args:
            host_address: Address to bind the redirect listener to; detected
                automatically when omitted

        Returns:
            AuthorizationRecord from the code exchange

        Raises:
            MissingRedirectTargetError: If no address could be resolved
            AuthorizationTimeoutError: If the browser step was not completed in time
            MalformedRequestError: If the listener received an unparsable request
            StateMismatchError: If state checking is on and the state differs
            AuthorizationExchangeError: If the provider rejected the code
        """
        self._emit_status("Starting authentication process...")
        self.state = FlowState.IDLE

        try:
            address = self._resolve_address(host_address)

            # A new pair for every attempt, never reused after a failure
            self.pkce = generate_pkce_pair()
            state = generate_state() if self.verify_state else None

            async with CallbackListener(
                address, port=self.port, timeout=self.callback_timeout
            ) as listener:
                redirect_uri = listener.redirect_uri
                logger.debug(f"Using redirect URI: {redirect_uri}")

                self.authorization_url = build_authorization_url(
                    self.client_id,
                    redirect_uri,
                    self.pkce.challenge,
                    scope=self.scope,
                    state=state,
                )
                self.state = FlowState.AWAITING_REDIRECT
                self._emit_status(
                    f"Click this link for authentication: {self.authorization_url}"
                )
                if self.on_authorization_url:
                    self.on_authorization_url(self.authorization_url)

                result = await listener.wait_for_code()

            self._check_state(result, state)
            if not result.code:
                raise OAuthFlowError("Redirect carried no authorization code")

            self.state = FlowState.EXCHANGING
            record = await self.exchange_client.exchange_code(
                result.code,
                self.pkce.verifier,
                redirect_uri,
            )

        except asyncio.CancelledError:
            self.state = FlowState.FAILED
            logger.info("Authentication cancelled")
            raise
        except Exception as e:
            self.state = FlowState.FAILED
            logger.error(f"Error during authentication: {e}")
            raise

        self.credentials.apply(record)
        if record.refresh_token:
            self.store.save_refresh_token(record.refresh_token)
        else:
            logger.warning("Token response carried no refresh token; nothing to persist")

        self.state = FlowState.AUTHENTICATED
        self._emit_status("Authentication successful, received access token.")
        return record

    def _check_state(self, result: CallbackResult, expected: str | None) -> None:
        if expected is None:
            return

        # Constant-time comparison
        if not hmac.compare_digest(result.state or "", expected):
            raise StateMismatchError("State mismatch in callback - possible CSRF attack")
