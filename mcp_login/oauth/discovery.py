"""OAuth metadata discovery per RFC 9728 and RFC 8414.

This module handles:
- Locating the authorization server through Protected Resource Metadata (RFC 9728)
- Fetching Authorization Server Metadata (RFC 8414 / OpenID Connect Discovery)
- Falling back to conventional endpoints when no document can be found

Servers differ in where they publish these documents. The resource server and
authorization server may or may not share an origin, may publish OAuth or
OIDC documents, and may put them at the root or under the resource's own path.
So every candidate location is tried in a fixed order before falling back.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .errors import OAuthError
from .http import (
    create_http_client,
    extract_base_url,
    http_status_hint,
    url_path,
    warn_if_insecure,
)

logger = logging.getLogger(__name__)

PROTECTED_RESOURCE_SUFFIX = "oauth-protected-resource"
OAUTH_SERVER_SUFFIX = "oauth-authorization-server"
OPENID_SUFFIX = "openid-configuration"


class DiscoveryError(OAuthError):
    """Error during OAuth metadata discovery."""

    pass


class UnsupportedChallengeMethodError(DiscoveryError):
    """The authorization server cannot verify S256 PKCE challenges."""

    pass


def _str_list(data: dict[str, Any], key: str) -> list[str]:
    """Read an optional list-of-strings field, ignoring non-string entries."""
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _required_str(data: dict[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{key}' must be a non-empty string")
    return value


@dataclass
class ProtectedResourceMetadata:
    """OAuth 2.0 Protected Resource Metadata per RFC 9728.

    Only used to find an authorization server when the caller did not
    configure one.
    """

    resource: str | None = None
    authorization_servers: list[str] = field(default_factory=list)
    scopes_supported: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProtectedResourceMetadata":
        """Create from JSON response."""
        resource = data.get("resource")
        return cls(
            resource=resource if isinstance(resource, str) else None,
            authorization_servers=_str_list(data, "authorization_servers"),
            scopes_supported=_str_list(data, "scopes_supported"),
        )


@dataclass
class AuthServerMetadata:
    """OAuth 2.0 Authorization Server Metadata per RFC 8414.

    Contains information about the authorization server's endpoints
    and capabilities.
    """

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str | None = None
    scopes_supported: list[str] = field(default_factory=list)
    response_types_supported: list[str] = field(default_factory=list)
    grant_types_supported: list[str] = field(default_factory=list)
    code_challenge_methods_supported: list[str] = field(default_factory=list)
    client_id_metadata_document_supported: bool = False

    def supports_pkce(self) -> bool:
        """Check if S256 PKCE can be used.

        A server that does not advertise any challenge methods is given the
        benefit of the doubt. Only an explicit list without S256 fails.
        """
        methods = self.code_challenge_methods_supported
        return not methods or "S256" in methods

    def supports_dcr(self) -> bool:
        """Check if the server advertises Dynamic Client Registration."""
        return self.registration_endpoint is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthServerMetadata":
        """Create from JSON response.

        Raises:
            KeyError: If issuer, authorization_endpoint or token_endpoint is missing
            ValueError: If one of those fields is not a string
        """
        registration_endpoint = data.get("registration_endpoint")
        return cls(
            issuer=_required_str(data, "issuer"),
            authorization_endpoint=_required_str(data, "authorization_endpoint"),
            token_endpoint=_required_str(data, "token_endpoint"),
            registration_endpoint=(
                registration_endpoint if isinstance(registration_endpoint, str) else None
            ),
            scopes_supported=_str_list(data, "scopes_supported"),
            response_types_supported=_str_list(data, "response_types_supported"),
            grant_types_supported=_str_list(data, "grant_types_supported"),
            code_challenge_methods_supported=_str_list(
                data, "code_challenge_methods_supported"
            ),
            client_id_metadata_document_supported=bool(
                data.get("client_id_metadata_document_supported", False)
            ),
        )


def _base_and_path(url: str) -> tuple[str, str]:
    try:
        return extract_base_url(url), url_path(url)
    except ValueError as e:
        raise DiscoveryError(str(e)) from e


def protected_resource_metadata_urls(server_url: str) -> list[str]:
    """Candidate Protected Resource Metadata URLs, in the order to try them.

    For ``https://api.example.com/v1/mcp`` this is the path-suffixed form
    ``/.well-known/oauth-protected-resource/v1/mcp`` followed by the root
    ``/.well-known/oauth-protected-resource``.
    """
    base, path = _base_and_path(server_url)
    root = f"{base}/.well-known/{PROTECTED_RESOURCE_SUFFIX}"
    if not path:
        return [root]
    return [f"{root}{path}", root]


def auth_server_metadata_urls(auth_server_url: str) -> list[str]:
    """Candidate Authorization Server Metadata URLs, in the order to try them.

    Issuers with a path try the RFC 8414 path-suffixed OAuth and OIDC forms,
    then the OIDC path-prefixed form. Issuers without a path try the OAuth
    and OIDC root documents.
    """
    base, path = _base_and_path(auth_server_url)
    if not path:
        return [
            f"{base}/.well-known/{OAUTH_SERVER_SUFFIX}",
            f"{base}/.well-known/{OPENID_SUFFIX}",
        ]
    return [
        f"{base}/.well-known/{OAUTH_SERVER_SUFFIX}{path}",
        f"{base}/.well-known/{OPENID_SUFFIX}{path}",
        f"{base}{path}/.well-known/{OPENID_SUFFIX}",
    ]


def default_auth_server_metadata(auth_server_url: str) -> AuthServerMetadata:
    """Conventional endpoints for servers that publish no metadata document."""
    base, _ = _base_and_path(auth_server_url)
    return AuthServerMetadata(
        issuer=auth_server_url,
        authorization_endpoint=f"{base}/authorize",
        token_endpoint=f"{base}/token",
        registration_endpoint=f"{base}/register",
        response_types_supported=["code"],
        grant_types_supported=["authorization_code"],
        code_challenge_methods_supported=["S256"],
    )


async def _get_json(http_client: httpx.AsyncClient, url: str) -> dict[str, Any]:
    """GET a URL and return its JSON object body.

    Raises:
        DiscoveryError: On transport errors, non-2xx status or a non-object body
    """
    logger.debug(f"Fetching metadata from {url}")
    try:
        response = await http_client.get(url)
    except httpx.TimeoutException as e:
        raise DiscoveryError(f"Timeout: {e}") from e
    except httpx.RequestError as e:
        raise DiscoveryError(f"Network error: {e}") from e

    if not 200 <= response.status_code < 300:
        hint = http_status_hint(response.status_code)
        message = f"HTTP {response.status_code}"
        if hint:
            message += f" ({hint})"
        raise DiscoveryError(message)

    try:
        data = response.json()
    except (ValueError, TypeError) as e:
        raise DiscoveryError(f"Invalid JSON response: {e}") from e

    if not isinstance(data, dict):
        raise DiscoveryError("Metadata document is not a JSON object")
    return data


async def discover_auth_server(server_url: str, http_client: httpx.AsyncClient) -> str:
    """Find the authorization server for a protected resource.

    Returns the first entry of the first non-empty ``authorization_servers``
    list. When no candidate document yields one, the resource's own base URL
    is assumed to be the authorization server.
    """
    for url in protected_resource_metadata_urls(server_url):
        try:
            metadata = ProtectedResourceMetadata.from_dict(await _get_json(http_client, url))
        except DiscoveryError as e:
            logger.debug(f"Protected resource metadata unavailable at {url}: {e}")
            continue

        if metadata.authorization_servers:
            auth_server = metadata.authorization_servers[0]
            logger.debug(f"Found authorization server {auth_server} via {url}")
            return auth_server

        logger.debug(f"Protected resource metadata at {url} lists no authorization servers")

    base_url, _ = _base_and_path(server_url)
    logger.info(
        f"No protected resource metadata for {server_url}; "
        f"assuming {base_url} is the authorization server"
    )
    return base_url


async def fetch_auth_server_metadata(
    auth_server_url: str,
    http_client: httpx.AsyncClient,
    allow_defaults: bool = True,
) -> AuthServerMetadata:
    """Fetch Authorization Server Metadata, trying OAuth and OIDC locations.

    Args:
        auth_server_url: The authorization server (issuer) URL
        http_client: HTTP client to use
        allow_defaults: Synthesize conventional endpoints when every
            candidate fails, instead of raising

    Returns:
        AuthServerMetadata instance

    Raises:
        DiscoveryError: If every candidate fails and allow_defaults is False
    """
    errors: list[tuple[str, str]] = []  # (endpoint, error_message)

    for url in auth_server_metadata_urls(auth_server_url):
        try:
            metadata = AuthServerMetadata.from_dict(await _get_json(http_client, url))
        except DiscoveryError as e:
            errors.append((url, str(e)))
            continue
        except KeyError as e:
            errors.append((url, f"Missing required field: {e}"))
            continue
        except ValueError as e:
            errors.append((url, f"Invalid field: {e}"))
            continue

        logger.debug(f"Fetched auth server metadata from {url}")
        return metadata

    error_details = "\n".join(f"  - {ep}: {err}" for ep, err in errors)

    if not allow_defaults:
        raise DiscoveryError(
            f"Failed to fetch auth server metadata for {auth_server_url}.\n"
            f"Tried the following endpoints:\n{error_details}\n\n"
            f"The server may not support OAuth 2.0/OIDC discovery, "
            f"or the URL may be incorrect."
        )

    logger.warning(
        f"No auth server metadata found for {auth_server_url}; "
        f"using default /authorize and /token endpoints"
    )
    logger.debug(f"Tried:\n{error_details}")
    return default_auth_server_metadata(auth_server_url)


async def discover_oauth_metadata(
    server_url: str,
    auth_server_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    allow_defaults: bool = True,
) -> AuthServerMetadata:
    """Perform full OAuth discovery for an MCP server.

    This is the main entry point for discovery. It:
    1. Uses the configured authorization server, or finds one through
       Protected Resource Metadata
    2. Fetches that server's metadata (or synthesizes defaults)
    3. Rejects servers that explicitly do not support S256 PKCE

    Args:
        server_url: The MCP server (resource) URL
        auth_server_url: Optional known authorization server URL
        http_client: Optional HTTP client to use
        allow_defaults: See fetch_auth_server_metadata

    Returns:
        AuthServerMetadata for the authorization server

    Raises:
        DiscoveryError: If the URL is invalid or discovery fails
        UnsupportedChallengeMethodError: If the server lacks S256 support
    """
    client = http_client or create_http_client()
    should_close = http_client is None

    try:
        if auth_server_url:
            logger.debug(f"Using configured authorization server {auth_server_url}")
        else:
            auth_server_url = await discover_auth_server(server_url, client)

        metadata = await fetch_auth_server_metadata(
            auth_server_url, client, allow_defaults=allow_defaults
        )
    finally:
        if should_close:
            await client.aclose()

    if not metadata.supports_pkce():
        raise UnsupportedChallengeMethodError(
            f"Authorization server {auth_server_url} does not support PKCE with S256 "
            f"(supported: {', '.join(metadata.code_challenge_methods_supported)})"
        )

    warn_if_insecure(metadata.authorization_endpoint, "Authorization endpoint")
    warn_if_insecure(metadata.token_endpoint, "Token endpoint")

    return metadata
