"""HTTP helpers shared by discovery and token exchange.

The HTTP client is always created explicitly and passed around. Nothing in
this package keeps a process-wide client, so tests can inject a double.
"""

import ipaddress
import logging
from urllib.parse import urlparse

import httpx

from .. import __version__

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds
USER_AGENT = f"mcp-login/{__version__}"


def create_http_client(
    timeout: float = DEFAULT_TIMEOUT,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> httpx.AsyncClient:
    """Create the async HTTP client used for discovery and token requests.

    The caller owns the returned client and must close it with ``aclose()``.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout, connect=connect_timeout),
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        follow_redirects=True,
    )


def http_status_hint(status_code: int) -> str:
    """Get a user-friendly hint for common HTTP status codes."""
    hints = {
        400: "Bad request - check client_id, redirect URI and other parameters",
        401: "Client authentication failed - check client_id and client_secret",
        403: "Access forbidden - check if you have permission to access this resource",
        404: "Endpoint not found - the server may not publish this metadata document",
        500: "Server error - the authorization server may be experiencing issues",
        502: "Bad gateway - there may be a proxy or network issue",
        503: "Service unavailable - the server may be temporarily down",
    }
    return hints.get(status_code, "")


def extract_base_url(url: str) -> str:
    """Return ``scheme://host[:port]`` for a URL, dropping path and query.

    Raises:
        ValueError: If the URL has no scheme or host
    """
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        raise ValueError(f"Invalid URL (expected scheme://host/...): {url!r}")

    host = parsed.hostname
    if ":" in host:
        # IPv6 literal
        host = f"[{host}]"
    if parsed.port is not None:
        return f"{parsed.scheme}://{host}:{parsed.port}"
    return f"{parsed.scheme}://{host}"


def url_path(url: str) -> str:
    """Return the URL path without a trailing slash ("" for the root)."""
    return urlparse(url).path.rstrip("/")


def is_loopback(url: str) -> bool:
    """Check whether a URL points at this machine."""
    host = urlparse(url).hostname or ""
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def warn_if_insecure(url: str, context: str) -> None:
    """Log a warning for plain-HTTP OAuth endpoints on remote hosts.

    Codes and tokens sent to such endpoints travel unencrypted. Loopback
    servers (local development) are exempt.
    """
    if urlparse(url).scheme != "https" and not is_loopback(url):
        logger.warning(f"{context} does not use HTTPS: {url}")
