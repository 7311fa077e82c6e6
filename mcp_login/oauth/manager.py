"""High-level OAuth manager for mcp-login.

This module provides the main interface for OAuth operations used by the
CLI: logging in, refreshing, logging out and reporting token status.
"""

import logging
import webbrowser
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from .callback import DEFAULT_CALLBACK_TIMEOUT
from .discovery import DiscoveryError
from .flow import OAuthFlow, OAuthFlowError, TokenExchangeError
from .store import CredentialManager, TokenStatus
from .tokens import OAuthConfig, StoredToken

logger = logging.getLogger(__name__)


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"
        - "2 weeks"
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 0:
        return "Expired"

    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    if days < 14:
        return f"{days} day{'s' if days != 1 else ''}"

    weeks = days // 7
    return f"{weeks} week{'s' if weeks != 1 else ''}"


def _format_time_ago(dt: datetime) -> str:
    """Format a past datetime as e.g. "3 hours ago"."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return _format_timedelta(datetime.now(timezone.utc) - dt) + " ago"


@dataclass
class AuthStatus:
    """Authentication status for an MCP server.

    Attributes:
        server_name: The friendly server name
        server_url: The MCP server URL
        status: Freshness of the stored token
        expires_at: When the token expires (ISO format string)
        expires_in_human: Time until expiry (e.g. "45 minutes"), or "Expired"
        expired_ago_human: Time since expiry (e.g. "2 hours ago") for expired tokens
        has_refresh_token: Whether a refresh token is available
        scopes: Granted scopes
    """

    server_name: str
    server_url: str
    status: TokenStatus = TokenStatus.NONE
    expires_at: str | None = None
    expires_in_human: str | None = None
    expired_ago_human: str | None = None
    has_refresh_token: bool = False
    scopes: list[str] = field(default_factory=list)

    @property
    def authenticated(self) -> bool:
        return self.status in (TokenStatus.VALID, TokenStatus.EXPIRES_SOON)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "server_name": self.server_name,
            "server_url": self.server_url,
            "status": self.status.value,
            "description": self.status.description,
            "authenticated": self.authenticated,
            "expires_at": self.expires_at,
            "expires_in_human": self.expires_in_human,
            "expired_ago_human": self.expired_ago_human,
            "has_refresh_token": self.has_refresh_token,
            "scopes": list(self.scopes),
        }


class OAuthManager:
    """Manages OAuth authentication for MCP servers.

    Tokens produced by OAuthFlow are persisted here, never by the flow.

    Usage:
        credentials = CredentialManager()
        credentials.load()
        manager = OAuthManager(credentials)

        token = await manager.ensure_token(url, config)
        if token is None:
            token = await manager.login(url, config, on_status=print)
    """

    def __init__(
        self,
        credentials: CredentialManager,
        http_client: httpx.AsyncClient | None = None,
        callback_timeout: float | None = DEFAULT_CALLBACK_TIMEOUT,
        open_browser: Callable[[str], bool] | None = webbrowser.open,
    ):
        """Initialize the manager.

        Args:
            credentials: Loaded credential manager used for persistence
            http_client: Optional HTTP client shared by every flow
            callback_timeout: Seconds to wait for the browser redirect
            open_browser: Browser launcher; None only prints the URL
        """
        self.credentials = credentials
        self.http_client = http_client
        self.callback_timeout = callback_timeout
        self.open_browser = open_browser

    def _flow(
        self,
        server_url: str,
        config: OAuthConfig,
        on_status: Callable[[str], None] | None = None,
    ) -> OAuthFlow:
        return OAuthFlow(
            server_url,
            config,
            http_client=self.http_client,
            callback_timeout=self.callback_timeout,
            open_browser=self.open_browser,
            on_status=on_status,
        )

    async def login(
        self,
        server_url: str,
        config: OAuthConfig,
        on_status: Callable[[str], None] | None = None,
    ) -> StoredToken:
        """Run the browser OAuth flow and persist the resulting token.

        Raises:
            OAuthError: If any step of the flow fails; nothing is stored
        """
        token = await self._flow(server_url, config, on_status).run()
        self.credentials.store_token(server_url, token)
        logger.info(f"Logged in to {server_url}")
        return token

    async def refresh(
        self,
        server_url: str,
        config: OAuthConfig,
        on_status: Callable[[str], None] | None = None,
    ) -> StoredToken:
        """Refresh the stored token once and persist the result.

        Raises:
            OAuthFlowError: If no refresh token is stored
            DiscoveryError: If the token endpoint cannot be discovered
            TokenExchangeError: If the token endpoint rejects the refresh
        """
        token = self.credentials.get_token(server_url)
        if token is None or not token.refresh_token:
            raise OAuthFlowError(
                f"No refresh token stored for {server_url}. "
                f"Run 'mcp-login login' to re-authenticate."
            )

        flow = self._flow(server_url, config, on_status)
        metadata = await flow.discover()
        new_token = await flow.refresh_token(token.refresh_token, metadata)

        self.credentials.store_token(server_url, new_token)
        logger.info(f"Token refreshed for {server_url}")
        return new_token

    async def ensure_token(
        self,
        server_url: str,
        config: OAuthConfig,
    ) -> StoredToken | None:
        """Return a usable token, refreshing once if it is about to expire.

        Returns:
            The stored or refreshed token, or None when a login is required
        """
        status = self.credentials.token_status(server_url)
        token = self.credentials.get_token(server_url)

        if status is TokenStatus.NONE or token is None:
            logger.debug(f"No token stored for {server_url}")
            return None

        if status is TokenStatus.VALID:
            return token

        if not token.has_refresh_token():
            logger.info(
                f"Token for {server_url} is {status.description.lower()} "
                f"and no refresh token is available. User must re-authenticate."
            )
            return None if status is TokenStatus.EXPIRED else token

        try:
            return await self.refresh(server_url, config)
        except (DiscoveryError, TokenExchangeError) as e:
            logger.warning(f"Token refresh failed for {server_url}: {e}")
            # A token inside the buffer still works until it actually expires
            return None if token.is_expired() else token

    def logout(self, server_url: str) -> bool:
        """Remove stored authentication for a server.

        Returns:
            True if a token was removed, False if none was stored
        """
        removed = self.credentials.remove_token(server_url) is not None
        if removed:
            logger.info(f"Logged out from {server_url}")
        return removed

    def get_auth_header(self, server_url: str) -> str | None:
        """Get the Authorization header value for a server, if a token is stored.

        Expired tokens still produce a header; the server's 401 is the signal
        to refresh.
        """
        token = self.credentials.get_token(server_url)
        if token is None:
            return None
        return token.get_auth_header()

    def get_auth_status(self, server_name: str, server_url: str) -> AuthStatus:
        """Get authentication status for a server.

        Args:
            server_name: Friendly name for display
            server_url: The MCP server URL
        """
        status = self.credentials.token_status(server_url)
        token = self.credentials.get_token(server_url)

        if token is None:
            return AuthStatus(server_name=server_name, server_url=server_url)

        expires_in_human = None
        expired_ago_human = None
        if token.expires_at:
            expires_at = token.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)

            remaining = expires_at - datetime.now(timezone.utc)
            if remaining.total_seconds() > 0:
                expires_in_human = _format_timedelta(remaining)
            else:
                expires_in_human = "Expired"
                expired_ago_human = _format_time_ago(expires_at)

        return AuthStatus(
            server_name=server_name,
            server_url=server_url,
            status=status,
            expires_at=token.expires_at.isoformat() if token.expires_at else None,
            expires_in_human=expires_in_human,
            expired_ago_human=expired_ago_human,
            has_refresh_token=token.has_refresh_token(),
            scopes=list(token.scopes),
        )
