"""Shared fixtures and utilities for mcp-login tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mcp_login.oauth.discovery import AuthServerMetadata
from mcp_login.oauth.store import CredentialManager
from mcp_login.oauth.tokens import OAuthConfig, StoredToken


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def auth_metadata() -> AuthServerMetadata:
    """Authorization server metadata with S256 support."""
    return AuthServerMetadata(
        issuer="https://auth.example.com",
        authorization_endpoint="https://auth.example.com/authorize",
        token_endpoint="https://auth.example.com/token",
        scopes_supported=["read", "write"],
        code_challenge_methods_supported=["S256"],
    )


@pytest.fixture
def oauth_config() -> OAuthConfig:
    """A public OAuth client."""
    return OAuthConfig(client_id="test-client")


@pytest.fixture
def valid_token() -> StoredToken:
    """A token valid for one hour, with a refresh token."""
    return StoredToken(
        access_token="access-123",
        refresh_token="refresh-456",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=["read"],
    )


@pytest.fixture
def expired_token() -> StoredToken:
    """A token that expired an hour ago, with a refresh token."""
    return StoredToken(
        access_token="old-access",
        refresh_token="old-refresh",
        expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )


@pytest.fixture
def token_path(tmp_path: Path) -> Path:
    """Location for a token file inside the test's temp directory."""
    return tmp_path / "config" / "tokens.json"


@pytest.fixture
def credentials(token_path: Path) -> CredentialManager:
    """An empty credential manager backed by a temp file."""
    manager = CredentialManager(store_path=token_path)
    manager.load()
    return manager
