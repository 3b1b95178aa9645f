"""vicare-auth - OAuth2 Authorization Code + PKCE client for the Viessmann API.

Main Components:
    AuthManager: Session facade used by the CLI and API consumers
    OAuthFlow: Interactive authorization code flow orchestration
    TokenExchangeClient: Code exchange and single-flight token refresh
    AuthorizedClient: Bearer-token requests with transparent refresh
    SettingsStore: JSON settings file holding the refresh token

Quick Start:
    from vicare_auth import AuthManager, load_config

    async with AuthManager(load_config(), on_status=print) as manager:
        await manager.login()
        data = await manager.get_json(url)
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("vicare-auth")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

from .callback import (
    AuthorizationTimeoutError,
    CallbackError,
    CallbackListener,
    CallbackResult,
    MalformedRequestError,
)
from .client import (
    ApiError,
    AuthorizedClient,
    AuthorizedRequestError,
    RetryExhaustedError,
)
from .config import AuthConfig, ConfigError, load_config
from .exchange import (
    AuthorizationExchangeError,
    MissingRefreshTokenError,
    TokenExchangeClient,
    TokenExchangeError,
    TokenRefreshError,
)
from .flow import (
    FlowState,
    MissingRedirectTargetError,
    OAuthFlow,
    OAuthFlowError,
    StateMismatchError,
    build_authorization_url,
)
from .manager import AuthManager, AuthStatus
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_pkce_pair
from .store import SettingsStore, StorageError, StorageReadError, StorageWriteError
from .tokens import AuthorizationRecord, CredentialState

__all__ = [
    "__version__",
    # Manager (main entry point)
    "AuthManager",
    "AuthStatus",
    # Config
    "AuthConfig",
    "ConfigError",
    "load_config",
    # Flow
    "OAuthFlow",
    "FlowState",
    "build_authorization_url",
    "OAuthFlowError",
    "MissingRedirectTargetError",
    "StateMismatchError",
    # Token exchange
    "TokenExchangeClient",
    "TokenExchangeError",
    "AuthorizationExchangeError",
    "TokenRefreshError",
    "MissingRefreshTokenError",
    # Authorized requests
    "AuthorizedClient",
    "AuthorizedRequestError",
    "RetryExhaustedError",
    "ApiError",
    # Tokens
    "AuthorizationRecord",
    "CredentialState",
    # Storage
    "SettingsStore",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    # PKCE
    "PKCEPair",
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    # Callback
    "CallbackListener",
    "CallbackResult",
    "CallbackError",
    "AuthorizationTimeoutError",
    "MalformedRequestError",
]
