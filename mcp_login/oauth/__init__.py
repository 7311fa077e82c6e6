"""OAuth 2.1 authorization code flow with PKCE for MCP servers.

This package logs a local tool into a remote MCP server that publishes its
authorization requirements through well-known metadata documents, and keeps
the resulting tokens in a JSON credential store.

Main Components:
    OAuthManager: Login, refresh, logout and status on top of the store
    OAuthFlow: Discovery, browser authorization and code exchange
    CredentialManager: JSON token file with freshness checks
    StoredToken: Token data structure

Quick Start:
    from mcp_login.oauth import CredentialManager, OAuthConfig, OAuthManager

    credentials = CredentialManager()
    credentials.load()
    manager = OAuthManager(credentials)

    config = OAuthConfig(client_id="my-client")
    token = await manager.ensure_token(server_url, config)
    if token is None:
        token = await manager.login(server_url, config, on_status=print)

    header = manager.get_auth_header(server_url)
"""

from .callback import (
    AuthorizationError,
    CallbackError,
    CallbackResult,
    CallbackTimeoutError,
    LocalhostCallbackServer,
    MissingCodeError,
    StateMismatchError,
)
from .discovery import (
    AuthServerMetadata,
    DiscoveryError,
    ProtectedResourceMetadata,
    UnsupportedChallengeMethodError,
    discover_oauth_metadata,
)
from .errors import OAuthError
from .flow import (
    OAuthFlow,
    OAuthFlowError,
    TokenExchangeError,
    build_authorization_url,
    exchange_code,
    refresh_access_token,
    refresh_oauth_token,
    run_oauth_flow,
)
from .manager import AuthStatus, OAuthManager
from .pkce import (
    PKCEPair,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce,
    generate_pkce_pair,
    generate_state,
)
from .store import CredentialManager, TokenStatus, TokenStore, TokenStoreError, normalize_url
from .tokens import OAuthConfig, StoredToken

__all__ = [
    # Manager (main entry point)
    "OAuthManager",
    "AuthStatus",
    # Flow
    "OAuthFlow",
    "run_oauth_flow",
    "refresh_oauth_token",
    "build_authorization_url",
    "exchange_code",
    "refresh_access_token",
    # Discovery
    "discover_oauth_metadata",
    "AuthServerMetadata",
    "ProtectedResourceMetadata",
    # Tokens
    "StoredToken",
    "OAuthConfig",
    # Storage
    "CredentialManager",
    "TokenStore",
    "TokenStatus",
    "normalize_url",
    # PKCE
    "generate_pkce",
    "generate_pkce_pair",
    "generate_state",
    "generate_code_verifier",
    "generate_code_challenge",
    "PKCEPair",
    # Callback
    "LocalhostCallbackServer",
    "CallbackResult",
    # Errors
    "OAuthError",
    "DiscoveryError",
    "UnsupportedChallengeMethodError",
    "CallbackError",
    "AuthorizationError",
    "StateMismatchError",
    "MissingCodeError",
    "CallbackTimeoutError",
    "OAuthFlowError",
    "TokenExchangeError",
    "TokenStoreError",
]
