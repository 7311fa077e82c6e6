"""Config discovery and loading for mcp-login."""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from dotenv import load_dotenv

from .oauth.callback import DEFAULT_CALLBACK_TIMEOUT
from .oauth.store import DEFAULT_EXPIRY_BUFFER, DEFAULT_STORE_PATH, normalize_url
from .oauth.tokens import OAuthConfig

# Environment overrides
ENV_TOKEN_STORE = "MCP_LOGIN_TOKEN_STORE"
ENV_CALLBACK_TIMEOUT = "MCP_LOGIN_CALLBACK_TIMEOUT"
ENV_EXPIRY_BUFFER = "MCP_LOGIN_EXPIRY_BUFFER"

USER_CONFIG_DIR = Path.home() / ".config" / "mcp-login"

# Config file search paths in priority order
CONFIG_SEARCH_PATHS = [
    Path("mcp.json"),
    USER_CONFIG_DIR / "mcp.json",
]

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    USER_CONFIG_DIR / ".env",
]

SERVER_TYPES = ("http", "sse", "stdio")


class ConfigError(ValueError):
    """Invalid configuration file or environment value."""

    pass


def _resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} patterns in a string from environment variables.

    Missing variables resolve to an empty string.
    """
    if "${" not in value:
        return value

    result = value
    for match in re.finditer(r"\$\{([^}]+)\}", value):
        result = result.replace(match.group(0), os.environ.get(match.group(1), ""))
    return result


def _resolve_values(data: dict[str, Any]) -> dict[str, Any]:
    """Expand ${VAR} in string values and in lists of strings."""
    resolved: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            resolved[key] = _resolve_env_vars(value)
        elif isinstance(value, list):
            resolved[key] = [
                _resolve_env_vars(item) if isinstance(item, str) else item for item in value
            ]
        else:
            resolved[key] = value
    return resolved


@dataclass(frozen=True)
class NoAuth:
    """The server needs no credentials."""


@dataclass(frozen=True)
class BearerAuth:
    """A static bearer token from the config file."""

    token: str

    def get_auth_header(self) -> str:
        return f"Bearer {self.token}"


ServerAuth = Union[NoAuth, BearerAuth, OAuthConfig]


def parse_auth_config(data: dict[str, Any] | None) -> ServerAuth:
    """Parse the ``auth`` object of a server entry.

    ``{"type": "bearer", "token": ...}`` gives BearerAuth,
    ``{"type": "oauth", "client_id": ...}`` gives OAuthConfig and a missing
    object gives NoAuth. ``${VAR}`` references are expanded.

    Raises:
        ConfigError: For an unknown type or a missing required field
    """
    if not data:
        return NoAuth()
    if not isinstance(data, dict):
        raise ConfigError("'auth' must be a JSON object")

    data = _resolve_values(data)
    auth_type = data.get("type")

    if auth_type == "bearer":
        if not data.get("token"):
            raise ConfigError("Bearer auth requires 'token'")
        return BearerAuth(token=data["token"])

    if auth_type == "oauth":
        if not data.get("client_id"):
            raise ConfigError("OAuth auth requires 'client_id'")
        return OAuthConfig.from_dict(data)

    raise ConfigError(f"Unknown auth type: {auth_type!r} (expected 'oauth' or 'bearer')")


@dataclass
class ServerConfig:
    """Configuration for a single MCP server."""

    name: str
    server_type: str = "stdio"
    url: str | None = None
    command: str = ""
    args: list[str] = field(default_factory=list)
    auth: ServerAuth = field(default_factory=NoAuth)

    def is_remote(self) -> bool:
        """Check if the server is reached over HTTP."""
        return self.server_type in ("http", "sse") and bool(self.url)

    def oauth_config(self) -> OAuthConfig | None:
        """The OAuth client configuration, if this server uses OAuth."""
        return self.auth if isinstance(self.auth, OAuthConfig) else None


@dataclass
class Config:
    """Complete mcp-login configuration."""

    servers: dict[str, ServerConfig] = field(default_factory=dict)
    config_path: Path | None = None
    env_path: Path | None = None

    def find_by_url(self, url: str) -> ServerConfig | None:
        """Find a configured server by URL, ignoring case and trailing slashes."""
        wanted = normalize_url(url)
        for server in self.servers.values():
            if server.url and normalize_url(server.url) == wanted:
                return server
        return None


@dataclass
class Settings:
    """Runtime settings resolved from CLI options and the environment."""

    token_store_path: Path = DEFAULT_STORE_PATH
    callback_timeout: float | None = DEFAULT_CALLBACK_TIMEOUT
    expiry_buffer: int = DEFAULT_EXPIRY_BUFFER


def find_config_file(explicit_path: Path | None = None) -> Path | None:
    """Find the config file, checking the project then the user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in CONFIG_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking the project then the user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def parse_server_config(name: str, data: dict[str, Any]) -> ServerConfig:
    """Parse a server configuration from JSON data.

    Raises:
        ConfigError: If the entry is malformed
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Server '{name}': entry must be a JSON object")

    url = data.get("url")
    server_type = data.get("type") or ("http" if url else "stdio")
    if server_type not in SERVER_TYPES:
        raise ConfigError(
            f"Server '{name}': unknown type {server_type!r} "
            f"(expected one of {', '.join(SERVER_TYPES)})"
        )
    if server_type != "stdio" and not url:
        raise ConfigError(f"Server '{name}': type '{server_type}' requires 'url'")

    try:
        auth = parse_auth_config(data.get("auth"))
    except ConfigError as e:
        raise ConfigError(f"Server '{name}': {e}") from e

    return ServerConfig(
        name=name,
        server_type=server_type,
        url=_resolve_env_vars(url) if url else None,
        command=data.get("command", ""),
        args=data.get("args", []),
        auth=auth,
    )


def load_config(
    config_path: Path | None = None,
    env_path: Path | None = None,
) -> Config:
    """Load server configuration from a discovered or explicit path.

    The .env file is loaded first so ``${VAR}`` references can use it.

    Args:
        config_path: Explicit path to config file (optional)
        env_path: Explicit path to .env file (optional)

    Returns:
        Config object with the loaded servers

    Raises:
        FileNotFoundError: If no config file is found
        ConfigError: If the config file is invalid
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    config_file = find_config_file(config_path)
    if config_file is None:
        searched = ", ".join(str(p) for p in ([config_path] if config_path else CONFIG_SEARCH_PATHS))
        raise FileNotFoundError(
            f"No mcp-login config file found (searched: {searched}).\n\n"
            f"Create one with your MCP servers. Example (mcp.json):\n\n"
            f'{{\n  "mcpServers": {{\n'
            f'    "notion": {{\n'
            f'      "type": "http",\n'
            f'      "url": "https://mcp.notion.com/mcp",\n'
            f'      "auth": {{"type": "oauth", "client_id": "${{NOTION_CLIENT_ID}}"}}\n'
            f"    }}\n  }}\n}}"
        )

    try:
        with open(config_file, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_file}: {e}") from e

    mcp_servers = data.get("mcpServers", {}) if isinstance(data, dict) else None
    if not isinstance(mcp_servers, dict):
        raise ConfigError(f"{config_file}: 'mcpServers' must be a JSON object")

    servers = {name: parse_server_config(name, entry) for name, entry in mcp_servers.items()}

    return Config(servers=servers, config_path=config_file, env_path=env_file)


def _env_number(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value


def load_settings(store_path: Path | None = None) -> Settings:
    """Resolve runtime settings. Explicit arguments beat environment variables.

    ``MCP_LOGIN_CALLBACK_TIMEOUT=0`` disables the callback timeout.

    Raises:
        ConfigError: If an environment value is not a valid number
    """
    settings = Settings()

    if store_path:
        settings.token_store_path = store_path
    elif os.environ.get(ENV_TOKEN_STORE):
        settings.token_store_path = Path(os.environ[ENV_TOKEN_STORE]).expanduser()

    timeout = _env_number(ENV_CALLBACK_TIMEOUT)
    if timeout is not None:
        settings.callback_timeout = timeout or None

    buffer = _env_number(ENV_EXPIRY_BUFFER)
    if buffer is not None:
        settings.expiry_buffer = int(buffer)

    return settings
