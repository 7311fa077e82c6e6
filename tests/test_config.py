"""Tests for config module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from mcp_login.config import (
    BearerAuth,
    ConfigError,
    NoAuth,
    ServerConfig,
    find_env_file,
    load_config,
    load_settings,
    parse_auth_config,
    parse_server_config,
)
from mcp_login.oauth.callback import DEFAULT_CALLBACK_TIMEOUT
from mcp_login.oauth.store import DEFAULT_EXPIRY_BUFFER, DEFAULT_STORE_PATH
from mcp_login.oauth.tokens import OAuthConfig


class TestParseAuthConfig:
    """Tests for the tagged auth union."""

    def test_missing_auth_is_no_auth(self) -> None:
        """Test that servers without an auth object need no credentials."""
        assert parse_auth_config(None) == NoAuth()

    def test_bearer(self) -> None:
        """Test static bearer tokens."""
        auth = parse_auth_config({"type": "bearer", "token": "abc"})
        assert auth == BearerAuth(token="abc")
        assert auth.get_auth_header() == "Bearer abc"

    def test_oauth(self) -> None:
        """Test OAuth client configuration."""
        auth = parse_auth_config({
            "type": "oauth",
            "client_id": "cid",
            "scopes": ["read", "write"],
            "auth_server_url": "https://auth.example.com",
        })
        assert auth == OAuthConfig(
            client_id="cid", scopes=("read", "write"), auth_server_url="https://auth.example.com"
        )

    def test_expands_env_vars(self) -> None:
        """Test ${VAR} expansion in auth values."""
        with patch.dict(os.environ, {"MY_CLIENT_ID": "from-env", "MY_SECRET": "s3cret"}):
            auth = parse_auth_config({
                "type": "oauth",
                "client_id": "${MY_CLIENT_ID}",
                "client_secret": "${MY_SECRET}",
            })

        assert isinstance(auth, OAuthConfig)
        assert auth.client_id == "from-env"
        assert auth.client_secret == "s3cret"

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"type": "basic"}, "Unknown auth type"),
            ({"type": "bearer"}, "requires 'token'"),
            ({"type": "oauth"}, "requires 'client_id'"),
        ],
    )
    def test_invalid(self, data: dict, message: str) -> None:
        """Test rejection of malformed auth objects."""
        with pytest.raises(ConfigError, match=message):
            parse_auth_config(data)


class TestParseServerConfig:
    """Tests for parse_server_config function."""

    def test_http_server_with_oauth(self) -> None:
        """Test a remote server entry."""
        server = parse_server_config("notion", {
            "type": "http",
            "url": "https://mcp.notion.com/mcp",
            "auth": {"type": "oauth", "client_id": "cid"},
        })

        assert server.is_remote()
        assert server.oauth_config() == OAuthConfig(client_id="cid")

    def test_type_defaults_from_url(self) -> None:
        """Test that entries with a URL default to http and others to stdio."""
        assert parse_server_config("a", {"url": "https://a.example.com"}).server_type == "http"
        stdio = parse_server_config("b", {"command": "uvx", "args": ["server"]})
        assert stdio.server_type == "stdio"
        assert not stdio.is_remote()
        assert stdio.oauth_config() is None

    def test_remote_requires_url(self) -> None:
        """Test that http/sse servers need a URL."""
        with pytest.raises(ConfigError, match="requires 'url'"):
            parse_server_config("a", {"type": "sse"})

    def test_unknown_type(self) -> None:
        """Test that unknown server types are rejected."""
        with pytest.raises(ConfigError, match="unknown type"):
            parse_server_config("a", {"type": "websocket", "url": "wss://a"})

    def test_auth_errors_name_the_server(self) -> None:
        """Test that auth errors mention the server entry."""
        with pytest.raises(ConfigError, match="Server 'a'"):
            parse_server_config("a", {"url": "https://a.example.com", "auth": {"type": "nope"}})


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_explicit_file(self, tmp_path: Path) -> None:
        """Test loading servers from an explicit path."""
        config_file = tmp_path / "mcp.json"
        config_file.write_text(json.dumps({
            "mcpServers": {
                "api": {"url": "https://api.example.com/mcp", "auth": {"type": "bearer", "token": "t"}},
                "local": {"command": "python"},
            }
        }))

        config = load_config(config_path=config_file, env_path=tmp_path / "missing.env")

        assert set(config.servers) == {"api", "local"}
        assert config.config_path == config_file
        assert config.find_by_url("https://API.example.com/mcp/") is config.servers["api"]
        assert config.find_by_url("https://other.example.com") is None

    def test_dotenv_feeds_env_vars(self, tmp_path: Path) -> None:
        """Test that .env values are available to ${VAR} references."""
        (tmp_path / ".env").write_text("MCP_LOGIN_TEST_CLIENT=dotenv-client\n")
        config_file = tmp_path / "mcp.json"
        config_file.write_text(json.dumps({
            "mcpServers": {
                "api": {
                    "url": "https://api.example.com",
                    "auth": {"type": "oauth", "client_id": "${MCP_LOGIN_TEST_CLIENT}"},
                }
            }
        }))

        with patch.dict(os.environ, {}):
            config = load_config(config_path=config_file, env_path=tmp_path / ".env")

        assert config.servers["api"].auth == OAuthConfig(client_id="dotenv-client")
        assert config.env_path == tmp_path / ".env"

    def test_not_found(self, tmp_path: Path) -> None:
        """Test that a missing config raises FileNotFoundError with an example."""
        with patch("mcp_login.config.CONFIG_SEARCH_PATHS", [tmp_path / "mcp.json"]):
            with pytest.raises(FileNotFoundError, match="mcpServers"):
                load_config(env_path=tmp_path / "missing.env")

    def test_invalid_json(self, tmp_path: Path) -> None:
        """Test that invalid JSON becomes ConfigError."""
        config_file = tmp_path / "mcp.json"
        config_file.write_text("{invalid")

        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_config(config_path=config_file, env_path=tmp_path / "missing.env")

    def test_find_env_file_explicit(self, tmp_path: Path) -> None:
        """Test explicit .env lookup."""
        env_file = tmp_path / "custom.env"
        assert find_env_file(env_file) is None
        env_file.write_text("")
        assert find_env_file(env_file) == env_file


class TestLoadSettings:
    """Tests for load_settings function."""

    def test_defaults(self) -> None:
        """Test defaults with no environment overrides."""
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings()

        assert settings.token_store_path == DEFAULT_STORE_PATH
        assert settings.callback_timeout == DEFAULT_CALLBACK_TIMEOUT
        assert settings.expiry_buffer == DEFAULT_EXPIRY_BUFFER

    def test_env_overrides(self, tmp_path: Path) -> None:
        """Test environment overrides."""
        env = {
            "MCP_LOGIN_TOKEN_STORE": str(tmp_path / "t.json"),
            "MCP_LOGIN_CALLBACK_TIMEOUT": "0",
            "MCP_LOGIN_EXPIRY_BUFFER": "60",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings()

        assert settings.token_store_path == tmp_path / "t.json"
        assert settings.callback_timeout is None
        assert settings.expiry_buffer == 60

    def test_explicit_store_beats_env(self, tmp_path: Path) -> None:
        """Test that --store wins over MCP_LOGIN_TOKEN_STORE."""
        with patch.dict(os.environ, {"MCP_LOGIN_TOKEN_STORE": "/elsewhere.json"}, clear=True):
            settings = load_settings(tmp_path / "cli.json")
        assert settings.token_store_path == tmp_path / "cli.json"

    def test_invalid_number(self) -> None:
        """Test that non-numeric overrides are rejected."""
        with patch.dict(os.environ, {"MCP_LOGIN_EXPIRY_BUFFER": "soon"}, clear=True):
            with pytest.raises(ConfigError, match="MCP_LOGIN_EXPIRY_BUFFER"):
                load_settings()


def test_server_config_defaults() -> None:
    """Test ServerConfig defaults to a stdio server without auth."""
    server = ServerConfig(name="x")
    assert server.server_type == "stdio"
    assert server.auth == NoAuth()
