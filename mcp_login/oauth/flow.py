"""OAuth authorization code flow with PKCE.

This module orchestrates one login against an MCP server:
1. Discover the authorization server metadata
2. Generate PKCE pair and state
3. Start localhost callback listener
4. Build authorization URL and open browser
5. Wait for callback with authorization code
6. Exchange code for tokens

Persisting the resulting token is left to the caller (see OAuthManager).
"""

import logging
import webbrowser
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Callable
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from .callback import DEFAULT_CALLBACK_TIMEOUT, LocalhostCallbackServer
from .discovery import AuthServerMetadata, discover_oauth_metadata
from .errors import OAuthError
from .http import create_http_client, http_status_hint
from .pkce import generate_pkce_pair, generate_state
from .tokens import OAuthConfig, StoredToken

logger = logging.getLogger(__name__)


class OAuthFlowError(OAuthError):
    """Error during OAuth flow."""

    pass


class TokenExchangeError(OAuthFlowError):
    """The token endpoint rejected a request or returned an unusable response.

    Attributes:
        status_code: HTTP status, when a response was received
        error: OAuth ``error`` code from the response body, if any
        error_description: OAuth ``error_description`` from the body, if any
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.error_description = error_description


def build_authorization_url(
    auth_server_metadata: AuthServerMetadata,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    resource: str,
    scopes: list[str] | tuple[str, ...] | None = None,
) -> str:
    """Build the authorization URL for browser redirect.

    Args:
        auth_server_metadata: Authorization server metadata
        client_id: The client ID
        redirect_uri: The callback URI
        state: State parameter for CSRF protection
        code_challenge: PKCE code challenge
        resource: Resource URI for RFC 8707
        scopes: Scopes to request; falls back to the server's scopes_supported

    Returns:
        Complete authorization URL. A query already present on the
        authorization endpoint is kept ahead of the added parameters.
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "resource": resource,
    }

    if scopes:
        params["scope"] = " ".join(scopes)
    elif auth_server_metadata.scopes_supported:
        params["scope"] = " ".join(auth_server_metadata.scopes_supported)

    parts = urlsplit(auth_server_metadata.authorization_endpoint)
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _error_fields(response: httpx.Response) -> tuple[str | None, str | None]:
    """Pull the OAuth error fields out of an error response, if it has any."""
    try:
        data = response.json()
    except ValueError:
        return None, None
    if not isinstance(data, dict):
        return None, None

    error = data.get("error")
    description = data.get("error_description")
    return (
        error if isinstance(error, str) else None,
        description if isinstance(description, str) else None,
    )


async def _post_token_request(
    token_endpoint: str,
    form: dict[str, str],
    http_client: httpx.AsyncClient,
    action: str,
) -> StoredToken:
    """POST a form to the token endpoint and normalize the response.

    Raises:
        TokenExchangeError: On transport errors, non-2xx status or a bad body
    """
    try:
        response = await http_client.post(
            token_endpoint,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.RequestError as e:
        raise TokenExchangeError(f"Network error during {action}: {e}") from e

    if not 200 <= response.status_code < 300:
        # Only surface the OAuth error fields; the raw body may hold secrets
        error, description = _error_fields(response)
        message = f"{action.capitalize()} failed (HTTP {response.status_code})"
        if error:
            message += f": {error}"
            if description:
                message += f" - {description}"
        else:
            hint = http_status_hint(response.status_code)
            if hint:
                message += f": {hint}"
        raise TokenExchangeError(
            message,
            status_code=response.status_code,
            error=error,
            error_description=description,
        )

    try:
        data: Any = response.json()
    except ValueError as e:
        raise TokenExchangeError(
            f"Invalid JSON in {action} response", status_code=response.status_code
        ) from e

    if not isinstance(data, dict):
        raise TokenExchangeError(
            f"Unexpected {action} response: not a JSON object",
            status_code=response.status_code,
        )

    try:
        return StoredToken.from_token_response(data)
    except KeyError as e:
        raise TokenExchangeError(
            f"{action.capitalize()} response missing required field: {e}",
            status_code=response.status_code,
        ) from e
    except (ValueError, TypeError, OverflowError) as e:
        raise TokenExchangeError(
            f"Invalid {action} response: {e}", status_code=response.status_code
        ) from e


async def exchange_code(
    token_endpoint: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    config: OAuthConfig,
    resource: str,
    http_client: httpx.AsyncClient,
) -> StoredToken:
    """Exchange an authorization code for tokens.

    Args:
        token_endpoint: Token endpoint from the server metadata
        code: Authorization code from callback
        redirect_uri: The redirect URI used in authorization
        code_verifier: PKCE code verifier
        config: Client configuration (client_id, optional client_secret)
        resource: Resource URI for RFC 8707
        http_client: HTTP client to use

    Returns:
        The normalized token

    Raises:
        TokenExchangeError: If token exchange fails
    """
    form: dict[str, str] = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": config.client_id,
        "code_verifier": code_verifier,
        "resource": resource,
    }

    if config.client_secret:
        form["client_secret"] = config.client_secret

    logger.debug(f"Exchanging authorization code at {token_endpoint}")
    return await _post_token_request(token_endpoint, form, http_client, "token exchange")


async def refresh_access_token(
    token_endpoint: str,
    refresh_token: str,
    config: OAuthConfig,
    http_client: httpx.AsyncClient,
) -> StoredToken:
    """Get a new access token with a refresh token.

    If the server does not issue a new refresh token, the one passed in is
    kept on the returned token.

    Raises:
        TokenExchangeError: If refresh fails
    """
    form: dict[str, str] = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": config.client_id,
    }

    if config.client_secret:
        form["client_secret"] = config.client_secret

    logger.debug(f"Refreshing access token at {token_endpoint}")
    token = await _post_token_request(token_endpoint, form, http_client, "token refresh")

    if token.refresh_token is None:
        token.refresh_token = refresh_token
    return token


class OAuthFlow:
    """Orchestrates the OAuth authorization code flow for one server.

    Discovery and authorization are separate steps, so a caller holding
    metadata from an earlier discover() can go straight to authorize().

    Usage:
        flow = OAuthFlow(server_url, OAuthConfig(client_id="my-client"))
        token = await flow.run()
    """

    def __init__(
        self,
        server_url: str,
        config: OAuthConfig,
        http_client: httpx.AsyncClient | None = None,
        callback_timeout: float | None = DEFAULT_CALLBACK_TIMEOUT,
        open_browser: Callable[[str], bool] | None = webbrowser.open,
        on_status: Callable[[str], None] | None = None,
    ):
        """Initialize OAuth flow.

        Args:
            server_url: The MCP server URL, also sent as the RFC 8707 resource
            config: Client configuration for this server
            http_client: Optional HTTP client; one is created per step otherwise
            callback_timeout: Seconds to wait for the browser redirect (None = forever)
            open_browser: Opens the authorization URL and reports success;
                None only shows the URL
            on_status: Optional callback for status messages
        """
        self.server_url = server_url
        self.config = config
        self.http_client = http_client
        self.callback_timeout = callback_timeout
        self.open_browser = open_browser
        self.on_status = on_status or (lambda msg: None)

    def _emit_status(self, message: str) -> None:
        """Emit a status message."""
        logger.info(message)
        self.on_status(message)

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the injected client, or a fresh one closed on exit."""
        if self.http_client is not None:
            yield self.http_client
        else:
            client = create_http_client()
            try:
                yield client
            finally:
                await client.aclose()

    def _launch_browser(self, auth_url: str) -> None:
        opened = False
        if self.open_browser is not None:
            self._emit_status("Opening browser for authorization...")
            try:
                opened = bool(self.open_browser(auth_url))
            except webbrowser.Error as e:
                logger.debug(f"Browser launch failed: {e}")

        if not opened:
            self._emit_status(f"Open this URL in your browser to continue:\n{auth_url}")

    async def discover(self) -> AuthServerMetadata:
        """Discover the authorization server metadata for the server.

        Raises:
            DiscoveryError: If discovery fails
            UnsupportedChallengeMethodError: If S256 PKCE is not supported
        """
        self._emit_status("Discovering OAuth configuration...")

        async with self._http() as client:
            metadata = await discover_oauth_metadata(
                self.server_url,
                auth_server_url=self.config.auth_server_url,
                http_client=client,
            )

        self._emit_status(f"Authorization server: {metadata.issuer}")
        return metadata

    async def authorize(self, metadata: AuthServerMetadata) -> StoredToken:
        """Run the browser authorization and exchange the code for a token.

        Args:
            metadata: Authorization server metadata from discover()

        Returns:
            The new token (not persisted)

        Raises:
            CallbackError: If the callback fails, mismatches state or times out
            TokenExchangeError: If the token endpoint rejects the code
        """
        pkce = generate_pkce_pair()
        state = generate_state()

        async with LocalhostCallbackServer(
            expected_state=state, timeout=self.callback_timeout
        ) as callback_server:
            redirect_uri = callback_server.redirect_uri

            auth_url = build_authorization_url(
                metadata,
                self.config.client_id,
                redirect_uri,
                state,
                pkce.challenge,
                self.server_url,
                self.config.scopes,
            )

            self._launch_browser(auth_url)
            self._emit_status(f"Waiting for callback on {redirect_uri}")

            code = await callback_server.wait_for_callback()

        self._emit_status("Exchanging code for tokens...")
        async with self._http() as client:
            token = await exchange_code(
                metadata.token_endpoint,
                code,
                redirect_uri,
                pkce.verifier,
                self.config,
                self.server_url,
                client,
            )

        self._emit_status("Successfully authenticated!")
        return token

    async def run(self) -> StoredToken:
        """Execute the complete OAuth flow: discover(), then authorize()."""
        metadata = await self.discover()
        return await self.authorize(metadata)

    async def refresh_token(
        self,
        refresh_token: str,
        metadata: AuthServerMetadata,
    ) -> StoredToken:
        """Refresh an access token against an already discovered server.

        Raises:
            TokenExchangeError: If refresh fails
        """
        self._emit_status("Refreshing token...")
        async with self._http() as client:
            token = await refresh_access_token(
                metadata.token_endpoint, refresh_token, self.config, client
            )
        self._emit_status("Token refreshed successfully")
        return token


async def run_oauth_flow(
    server_url: str,
    config: OAuthConfig,
    http_client: httpx.AsyncClient | None = None,
    callback_timeout: float | None = DEFAULT_CALLBACK_TIMEOUT,
    open_browser: Callable[[str], bool] | None = webbrowser.open,
    on_status: Callable[[str], None] | None = None,
) -> StoredToken:
    """Discover and authorize in one call. See OAuthFlow for the arguments."""
    flow = OAuthFlow(
        server_url,
        config,
        http_client=http_client,
        callback_timeout=callback_timeout,
        open_browser=open_browser,
        on_status=on_status,
    )
    return await flow.run()


async def refresh_oauth_token(
    server_url: str,
    config: OAuthConfig,
    refresh_token: str,
    http_client: httpx.AsyncClient | None = None,
) -> StoredToken:
    """Discover the token endpoint for a server and refresh once."""
    flow = OAuthFlow(server_url, config, http_client=http_client, open_browser=None)
    metadata = await flow.discover()
    return await flow.refresh_token(refresh_token, metadata)
