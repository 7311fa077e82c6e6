"""Base exception for the OAuth package.

Each module defines its own specific errors (DiscoveryError, CallbackError,
TokenExchangeError, TokenStoreError, ...). They all derive from OAuthError so
callers can handle any login failure in one place.
"""


class OAuthError(Exception):
    """Base class for all OAuth login and token storage errors."""

    pass
