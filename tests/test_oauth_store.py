"""Tests for the JSON token store."""

import json
import os
import stat
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from mcp_login.oauth.store import (
    CredentialManager,
    TokenStatus,
    TokenStore,
    TokenStoreError,
    normalize_url,
)
from mcp_login.oauth.tokens import StoredToken


class TestNormalizeUrl:
    """Tests for URL key normalization."""

    @pytest.mark.parametrize(
        "url",
        ["https://API.example.com/mcp/", "https://api.example.com/mcp", "HTTPS://api.example.com/MCP//"],
    )
    def test_equivalent_urls_share_a_key(self, url: str) -> None:
        """Test case and trailing-slash insensitivity."""
        assert normalize_url(url) == "https://api.example.com/mcp"


class TestTokenStatus:
    """Tests for TokenStatus display helpers."""

    def test_symbols_and_descriptions(self) -> None:
        """Test the one-character markers."""
        assert [s.symbol for s in TokenStatus] == ["?", "V", "!", "X"]
        assert TokenStatus.NONE.description == "Not authenticated"
        assert TokenStatus.EXPIRED.description == "Token expired"


class TestTokenStore:
    """Tests for the in-memory TokenStore."""

    def test_insert_and_get_normalized(self, valid_token: StoredToken) -> None:
        """Test that lookups ignore case and trailing slashes."""
        store = TokenStore()
        store.insert("https://API.example.com/mcp/", valid_token)

        assert store.get("https://api.example.com/mcp") is valid_token
        assert store.servers() == ["https://api.example.com/mcp"]

    def test_get_valid_skips_expired(self, expired_token: StoredToken) -> None:
        """Test that expired tokens are not returned as valid."""
        store = TokenStore({"https://a.example.com": expired_token})
        assert store.get("https://a.example.com") is expired_token
        assert store.get_valid("https://a.example.com") is None

    def test_remove(self, valid_token: StoredToken) -> None:
        """Test removal returns the token once."""
        store = TokenStore({"https://a.example.com": valid_token})
        assert store.remove("https://A.example.com/") is valid_token
        assert store.remove("https://a.example.com") is None

    def test_needs_refresh(self) -> None:
        """Test refresh detection against a buffer."""
        token = StoredToken.from_token_response({"access_token": "a", "expires_in": 100})
        store = TokenStore({"https://a.example.com": token})

        assert store.needs_refresh("https://a.example.com", 300)
        assert not store.needs_refresh("https://a.example.com", 60)
        assert not store.needs_refresh("https://unknown.example.com", 300)

    def test_from_dict_skips_invalid_records(self, valid_token: StoredToken) -> None:
        """Test that a bad record does not poison the whole file."""
        store = TokenStore.from_dict({
            "tokens": {
                "https://good.example.com": valid_token.to_dict(),
                "https://bad.example.com": {"refresh_token": "no access token"},
            }
        })
        assert store.servers() == ["https://good.example.com"]


class TestCredentialManagerPersistence:
    """Tests for load/save."""

    def test_missing_file_gives_empty_store(self, token_path: Path) -> None:
        """Test that loading a nonexistent file succeeds."""
        manager = CredentialManager(store_path=token_path)
        manager.load()
        assert manager.list_servers() == []

    def test_store_token_writes_file_format(
        self, credentials: CredentialManager, token_path: Path, valid_token: StoredToken
    ) -> None:
        """Test the on-disk layout and parent directory creation."""
        credentials.store_token("https://API.example.com/mcp/", valid_token)

        data = json.loads(token_path.read_text())
        assert list(data) == ["tokens"]
        record = data["tokens"]["https://api.example.com/mcp"]
        assert record["access_token"] == "access-123"
        assert record["refresh_token"] == "refresh-456"
        assert record["token_type"] == "Bearer"
        assert record["scopes"] == ["read"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_owner_only(
        self, credentials: CredentialManager, token_path: Path, valid_token: StoredToken
    ) -> None:
        """Test that the token file has mode 0600."""
        credentials.store_token("https://a.example.com", valid_token)
        assert stat.S_IMODE(os.stat(token_path).st_mode) == 0o600

    def test_reload_round_trip(
        self, credentials: CredentialManager, token_path: Path, valid_token: StoredToken
    ) -> None:
        """Test that a new manager sees saved tokens."""
        credentials.store_token("https://a.example.com", valid_token)

        other = CredentialManager(store_path=token_path)
        other.load()
        assert other.get_token("https://a.example.com") == valid_token

    def test_corrupt_file_raises_and_leaves_store_empty(self, token_path: Path) -> None:
        """Test that unparsable files raise TokenStoreError."""
        token_path.parent.mkdir(parents=True)
        token_path.write_text("{not json")

        manager = CredentialManager(store_path=token_path)
        with pytest.raises(TokenStoreError, match="corrupted"):
            manager.load()
        assert manager.list_servers() == []

    def test_atomic_save_keeps_old_file_on_failure(
        self, credentials: CredentialManager, token_path: Path, valid_token: StoredToken
    ) -> None:
        """Test that a failed replace leaves the previous file intact."""
        credentials.store_token("https://a.example.com", valid_token)
        before = token_path.read_text()

        with patch("mcp_login.oauth.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(TokenStoreError, match="disk full"):
                credentials.store_token("https://b.example.com", valid_token)

        assert token_path.read_text() == before
        assert [p.name for p in token_path.parent.iterdir()] == ["tokens.json"]

    def test_remove_token_saves_only_when_removed(
        self, credentials: CredentialManager, token_path: Path, valid_token: StoredToken
    ) -> None:
        """Test removal semantics."""
        assert credentials.remove_token("https://a.example.com") is None
        assert not token_path.exists()

        credentials.store_token("https://a.example.com", valid_token)
        assert credentials.remove_token("https://a.example.com/") == valid_token
        assert json.loads(token_path.read_text()) == {"tokens": {}}

    def test_clear_all(
        self, credentials: CredentialManager, token_path: Path, valid_token: StoredToken
    ) -> None:
        """Test that clear_all deletes the file and empties the store."""
        credentials.store_token("https://a.example.com", valid_token)
        credentials.clear_all()

        assert not token_path.exists()
        assert credentials.list_servers() == []
        credentials.clear_all()  # No file is fine


class TestCredentialManagerStatus:
    """Tests for token_status and needs_refresh."""

    def _store(self, credentials: CredentialManager, expires_in: int | None) -> None:
        response: dict[str, object] = {"access_token": "a"}
        if expires_in is not None:
            response["expires_in"] = expires_in
        credentials.store_token("https://a.example.com", StoredToken.from_token_response(response))

    def test_none(self, credentials: CredentialManager) -> None:
        """Test that a missing record is NONE."""
        assert credentials.token_status("https://a.example.com") is TokenStatus.NONE

    def test_expires_soon_depends_on_buffer(self, credentials: CredentialManager) -> None:
        """Test a token expiring in 100s with buffers of 300 and 60."""
        self._store(credentials, 100)

        assert credentials.token_status("https://a.example.com", 300) is TokenStatus.EXPIRES_SOON
        assert credentials.token_status("https://a.example.com", 60) is TokenStatus.VALID
        assert credentials.token_status("https://a.example.com") is TokenStatus.EXPIRES_SOON
        assert credentials.needs_refresh("https://a.example.com")

    def test_expired(self, credentials: CredentialManager, expired_token: StoredToken) -> None:
        """Test that a past expiry is EXPIRED, never EXPIRES_SOON."""
        credentials.store_token("https://a.example.com", expired_token)
        assert credentials.token_status("https://a.example.com") is TokenStatus.EXPIRED

    def test_no_expiry_is_always_valid(self, credentials: CredentialManager) -> None:
        """Test that tokens without expires_at are VALID for any buffer."""
        self._store(credentials, None)
        assert credentials.token_status("https://a.example.com", 10**9) is TokenStatus.VALID
        assert not credentials.needs_refresh("https://a.example.com")

    def test_custom_default_buffer(self, token_path: Path) -> None:
        """Test that the manager's expiry_buffer is the default."""
        manager = CredentialManager(store_path=token_path, expiry_buffer=60)
        manager.store_token(
            "https://a.example.com",
            StoredToken(access_token="a", expires_at=datetime.now(timezone.utc) + timedelta(seconds=100)),
        )
        assert manager.token_status("https://a.example.com") is TokenStatus.VALID
