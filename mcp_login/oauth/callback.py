"""Localhost callback listener for OAuth redirects.

This module provides a single-shot HTTP listener that receives the OAuth
authorization redirect. It:
- Binds 127.0.0.1 on an OS-assigned port before the authorization URL is built
- Answers exactly one callback request, then stops listening
- Rejects error responses, state mismatches and callbacks without a code
- Always shows the user an HTML page describing the result
"""

import asyncio
import hmac
import html
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

from .errors import OAuthError

logger = logging.getLogger(__name__)

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/callback"

# Default timeout for waiting for the browser redirect. None waits forever.
DEFAULT_CALLBACK_TIMEOUT = 300  # seconds

MAX_REQUEST_LINE = 16 * 1024


class CallbackError(OAuthError):
    """Error during OAuth callback handling."""

    pass


class CallbackTimeoutError(CallbackError):
    """Timeout waiting for OAuth callback."""

    pass


class AuthorizationError(CallbackError):
    """The authorization server redirected back with an ``error`` parameter."""

    def __init__(self, error: str, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        message = f"Authorization failed: {error}"
        if error_description:
            message += f" - {error_description}"
        super().__init__(message)


class StateMismatchError(CallbackError):
    """The callback's state does not match the one this process sent."""

    pass


class MissingCodeError(CallbackError):
    """The callback carries neither a code nor an error."""

    pass


@dataclass
class CallbackResult:
    """Query parameters from an OAuth callback.

    Attributes:
        code: The authorization code from the callback
        state: The state parameter from the callback
        error: Error code if authorization failed
        error_description: Human-readable error description
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None


def parse_callback_url(url: str) -> CallbackResult:
    """Parse OAuth callback parameters from a request target or full URL.

    Repeated parameters keep their first value. ``+`` decodes to a space.
    """
    params = parse_qs(urlparse(url).query, keep_blank_values=True)

    def get_param(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    return CallbackResult(
        code=get_param("code"),
        state=get_param("state"),
        error=get_param("error"),
        error_description=get_param("error_description"),
    )


def validate_callback(result: CallbackResult, expected_state: str) -> str:
    """Check a callback and return its authorization code.

    Checks run in this order: server-reported error, then state, then code.
    A code is never returned unless the state matches exactly.

    Raises:
        AuthorizationError: If the callback carries an ``error`` parameter
        StateMismatchError: If state is missing or differs from expected_state
        MissingCodeError: If there is no ``code`` parameter
    """
    if result.error is not None:
        raise AuthorizationError(result.error, result.error_description)

    # Constant-time comparison to prevent timing attacks
    if result.state is None or not hmac.compare_digest(
        result.state.encode("utf-8"), expected_state.encode("utf-8")
    ):
        raise StateMismatchError("State mismatch in callback - possible CSRF attack")

    if not result.code:
        raise MissingCodeError("No authorization code in callback")

    return result.code


PAGE_HTML = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex; justify-content: center; align-items: center;
            height: 100vh; margin: 0; background: {background};
        }}
        .card {{
            background: white; padding: 40px 60px; border-radius: 16px;
            text-align: center; max-width: 420px;
            box-shadow: 0 10px 40px rgba(0,0,0,0.2);
        }}
        h1 {{ color: #1a1a1a; margin: 0 0 12px 0; font-size: 24px; }}
        p {{ color: #555; margin: 0; }}
        .detail {{ margin-top: 16px; padding: 12px; border-radius: 8px;
            background: #fee; color: #c0392b; font-family: monospace; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>{title}</h1>
        <p>{message}</p>{detail}
    </div>
</body>
</html>"""

SUCCESS_BACKGROUND = "#2e7d5b"
FAILURE_BACKGROUND = "#b03a2e"


def render_success_page() -> str:
    """Page shown after a successful callback."""
    return PAGE_HTML.format(
        title="Authorization Successful",
        message="You can close this window and return to the terminal.",
        detail="",
        background=SUCCESS_BACKGROUND,
    )


def render_error_page(error: CallbackError) -> str:
    """Page shown after a rejected callback. All reflected values are escaped."""
    if isinstance(error, AuthorizationError):
        title = "Authorization Failed"
        detail = f"{error.error}: {error.error_description or 'No description provided'}"
    elif isinstance(error, StateMismatchError):
        title = "Invalid State"
        detail = "CSRF validation failed."
    else:
        title = "Invalid Callback"
        detail = str(error)

    return PAGE_HTML.format(
        title=title,
        message="The login was not completed. Return to the terminal for details.",
        detail=f'\n        <div class="detail">{html.escape(detail)}</div>',
        background=FAILURE_BACKGROUND,
    )


class LocalhostCallbackServer:
    """Single-shot HTTP listener for the OAuth redirect.

    The port is bound on start(), so the exact redirect URI is known before
    the browser is opened. The first request received decides the outcome.
    Connections that close without sending a request (browser preconnects)
    are ignored. Later requests are dropped unanswered.

    Usage:
        async with LocalhostCallbackServer(expected_state=state) as server:
            redirect_uri = server.redirect_uri
            # Open browser with authorization URL using redirect_uri
            code = await server.wait_for_callback()
    """

    def __init__(
        self,
        expected_state: str,
        timeout: float | None = DEFAULT_CALLBACK_TIMEOUT,
        path: str = CALLBACK_PATH,
    ):
        """Initialize callback listener.

        Args:
            expected_state: The state value sent in the authorization request
            timeout: Seconds to wait for the callback; None or 0 waits forever
            path: URL path of the redirect URI (default "/callback")
        """
        self.expected_state = expected_state
        self.timeout = timeout or None
        self.path = path
        self.port: int = 0
        self.redirect_uri: str = ""

        self._server: asyncio.Server | None = None
        self._done: asyncio.Event | None = None
        self._claimed = False
        self._code: str | None = None
        self._error: CallbackError | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    async def start(self) -> str:
        """Bind the listener and return the redirect URI.

        Port 0 lets the OS assign a free port atomically, avoiding races
        between port discovery and binding.
        """
        self._done = asyncio.Event()

        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                CALLBACK_HOST,
                0,
                limit=MAX_REQUEST_LINE,
            )
        except OSError as e:
            raise CallbackError(f"Failed to start callback listener: {e}") from e

        sockets = self._server.sockets
        if not sockets:
            raise CallbackError("Failed to start callback listener: no sockets created")

        self.port = sockets[0].getsockname()[1]
        self.redirect_uri = f"http://{CALLBACK_HOST}:{self.port}{self.path}"

        logger.debug(f"Callback listener started on {self.redirect_uri}")
        return self.redirect_uri

    async def stop(self) -> None:
        """Stop listening and drop any idle connections."""
        if self._server is None:
            return

        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()
        self._server = None
        logger.debug("Callback listener stopped")

    async def wait_for_callback(self) -> str:
        """Wait for the browser redirect and return the authorization code.

        Raises:
            CallbackTimeoutError: If the timeout is reached
            AuthorizationError: If the server reported an error
            StateMismatchError: If the state does not match
            MissingCodeError: If the callback has no code
        """
        if self._done is None:
            raise CallbackError("Callback listener not started")

        logger.info(f"Waiting for OAuth callback on {self.redirect_uri}")
        try:
            await asyncio.wait_for(self._done.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise CallbackTimeoutError(
                f"Timeout waiting for OAuth callback after {self.timeout:g} seconds"
            ) from None
        finally:
            await self.stop()

        if self._error is not None:
            raise self._error
        if self._code is None:
            raise CallbackError("No callback result received")
        return self._code

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle one incoming connection."""
        self._writers.add(writer)
        try:
            try:
                request_line = await reader.readline()
            except (ConnectionError, asyncio.LimitOverrunError, ValueError) as e:
                logger.debug(f"Dropping unreadable callback connection: {e}")
                return

            if not request_line.strip():
                # Connection opened and closed without a request
                return

            if self._claimed:
                logger.debug("Ignoring request after callback was already handled")
                return
            self._claimed = True

            # Request line looks like "GET /callback?code=xxx&state=yyy HTTP/1.1"
            parts = request_line.decode("utf-8", errors="replace").strip().split(" ")
            target = parts[1] if len(parts) >= 2 else "/"

            await self._skip_headers(reader)
            self._process(target)

            if self._error is None:
                await self._send_html_response(writer, HTTPStatus.OK, render_success_page())
            else:
                await self._send_html_response(
                    writer, HTTPStatus.BAD_REQUEST, render_error_page(self._error)
                )

        except ConnectionError as e:
            # Browser went away before reading the page; the outcome stands
            logger.debug(f"Callback connection closed early: {e}")
        finally:
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            if self._claimed and self._done is not None:
                self._done.set()

    async def _skip_headers(self, reader: asyncio.StreamReader) -> None:
        """Read up to the blank line that ends the request headers.

        The callback only needs the request target. Oversized lines (large
        cookies for 127.0.0.1) are discarded, and a dropped connection ends
        the headers early.
        """
        while True:
            try:
                header_line = await reader.readline()
            except (asyncio.LimitOverrunError, ValueError):
                logger.debug("Skipping oversized header line")
                continue
            except ConnectionError:
                return
            if header_line in (b"\r\n", b"\n", b""):
                return

    def _process(self, target: str) -> None:
        """Record the outcome for a request target."""
        result = parse_callback_url(target)
        try:
            self._code = validate_callback(result, self.expected_state)
            logger.debug("Received authorization code")
        except CallbackError as e:
            logger.warning(f"Rejected OAuth callback: {e}")
            self._error = e

    async def _send_html_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("ascii") + body)
        await writer.drain()

    async def __aenter__(self) -> "LocalhostCallbackServer":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.stop()
