"""Token storage for OAuth credentials.

Tokens live in a single JSON file, one record per server:

    {"tokens": {"https://api.example.com/mcp": {"access_token": "...", ...}}}

Keys are normalized server URLs (lower-cased, trailing slashes removed), so
``https://API.example.com/mcp/`` and ``https://api.example.com/mcp`` share a
record. The file is written atomically with owner-only permissions (0600).
"""

import json
import logging
import os
import stat
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import OAuthError
from .tokens import StoredToken

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path.home() / ".config" / "mcp-login" / "tokens.json"

# Tokens expiring within this many seconds are reported as EXPIRES_SOON
DEFAULT_EXPIRY_BUFFER = 300


class TokenStoreError(OAuthError):
    """Error reading or writing the token file."""

    pass


class TokenStatus(Enum):
    """Freshness of the stored token for one server."""

    NONE = "none"
    VALID = "valid"
    EXPIRES_SOON = "expires_soon"
    EXPIRED = "expired"

    @property
    def symbol(self) -> str:
        """One-character marker for compact listings."""
        return _STATUS_SYMBOLS[self]

    @property
    def description(self) -> str:
        """Human-readable description."""
        return _STATUS_DESCRIPTIONS[self]


_STATUS_SYMBOLS = {
    TokenStatus.NONE: "?",
    TokenStatus.VALID: "V",
    TokenStatus.EXPIRES_SOON: "!",
    TokenStatus.EXPIRED: "X",
}

_STATUS_DESCRIPTIONS = {
    TokenStatus.NONE: "Not authenticated",
    TokenStatus.VALID: "Authenticated",
    TokenStatus.EXPIRES_SOON: "Token expires soon",
    TokenStatus.EXPIRED: "Token expired",
}


def normalize_url(url: str) -> str:
    """Normalize a server URL for consistent key lookup."""
    return url.lower().rstrip("/")


class TokenStore:
    """In-memory mapping of normalized server URL to StoredToken."""

    def __init__(self, tokens: dict[str, StoredToken] | None = None):
        self._tokens: dict[str, StoredToken] = {}
        for url, token in (tokens or {}).items():
            self.insert(url, token)

    def get(self, server_url: str) -> StoredToken | None:
        """Get the token for a server, expired or not."""
        return self._tokens.get(normalize_url(server_url))

    def get_valid(self, server_url: str) -> StoredToken | None:
        """Get the token for a server only if it has not expired."""
        token = self.get(server_url)
        if token is None or token.is_expired():
            return None
        return token

    def insert(self, server_url: str, token: StoredToken) -> None:
        """Store a token, replacing any previous one for the server."""
        self._tokens[normalize_url(server_url)] = token

    def remove(self, server_url: str) -> StoredToken | None:
        """Remove and return the token for a server."""
        return self._tokens.pop(normalize_url(server_url), None)

    def needs_refresh(self, server_url: str, buffer_seconds: int) -> bool:
        """Check if a stored token is expired or expires within the buffer."""
        token = self.get(server_url)
        return token is not None and token.expires_soon(buffer_seconds)

    def servers(self) -> list[str]:
        """Normalized URLs of all servers with a stored token."""
        return list(self._tokens.keys())

    def clear(self) -> None:
        self._tokens.clear()

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, server_url: object) -> bool:
        return isinstance(server_url, str) and normalize_url(server_url) in self._tokens

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk file format."""
        return {"tokens": {url: token.to_dict() for url, token in self._tokens.items()}}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenStore":
        """Deserialize from the on-disk file format.

        Invalid records are skipped with a warning rather than failing the
        whole file.
        """
        store = cls()
        tokens = data.get("tokens") or {}
        if not isinstance(tokens, dict):
            raise ValueError("'tokens' must be a JSON object")

        for url, record in tokens.items():
            try:
                store.insert(url, StoredToken.from_dict(record))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping invalid token record for {url}: {e}")
        return store


class CredentialManager:
    """Owns the token file and answers freshness questions about it.

    Usage:
        credentials = CredentialManager()
        credentials.load()
        if credentials.token_status(url) is TokenStatus.VALID:
            header = credentials.get_valid_token(url).get_auth_header()
    """

    def __init__(
        self,
        store_path: Path | str | None = None,
        expiry_buffer: int = DEFAULT_EXPIRY_BUFFER,
    ):
        """Initialize credential manager.

        Args:
            store_path: Token file location (default ~/.config/mcp-login/tokens.json)
            expiry_buffer: Seconds before expiry at which a token needs refreshing
        """
        self.store_path = Path(store_path) if store_path else DEFAULT_STORE_PATH
        self.expiry_buffer = expiry_buffer
        self.store = TokenStore()

    def load(self) -> None:
        """Read the token file. A missing file gives an empty store.

        Raises:
            TokenStoreError: If the file cannot be read or parsed; the
                in-memory store is left empty
        """
        self.store = TokenStore()

        if not self.store_path.exists():
            logger.debug(f"No token file at {self.store_path}")
            return

        try:
            data = json.loads(self.store_path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("top-level value must be a JSON object")
            self.store = TokenStore.from_dict(data)
        except OSError as e:
            raise TokenStoreError(f"Cannot read token file {self.store_path}: {e}") from e
        except ValueError as e:
            raise TokenStoreError(
                f"Token file {self.store_path} is corrupted: {e}. "
                f"Run 'mcp-login logout --all' to clear it and re-authenticate."
            ) from e

        logger.debug(f"Loaded {len(self.store)} token(s) from {self.store_path}")

    def save(self) -> None:
        """Write the token file atomically with 0600 permissions.

        Raises:
            TokenStoreError: If the file cannot be written
        """
        content = json.dumps(self.store.to_dict(), indent=2)
        directory = self.store_path.parent

        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self.store_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.chmod(tmp_name, stat.S_IRUSR | stat.S_IWUSR)  # 0600
                os.replace(tmp_name, self.store_path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise TokenStoreError(f"Cannot write token file {self.store_path}: {e}") from e

        logger.debug(f"Saved {len(self.store)} token(s) to {self.store_path}")

    # Token operations

    def get_token(self, server_url: str) -> StoredToken | None:
        """Get the stored token for a server, expired or not."""
        return self.store.get(server_url)

    def get_valid_token(self, server_url: str) -> StoredToken | None:
        """Get the stored token for a server if it has not expired."""
        return self.store.get_valid(server_url)

    def store_token(self, server_url: str, token: StoredToken) -> None:
        """Store a token for a server and save the file."""
        self.store.insert(server_url, token)
        self.save()
        logger.debug(f"Stored token for {server_url}")

    def remove_token(self, server_url: str) -> StoredToken | None:
        """Remove the token for a server.

        The file is only rewritten when a token was actually removed.

        Returns:
            The removed token, or None if there was none
        """
        token = self.store.remove(server_url)
        if token is not None:
            self.save()
            logger.debug(f"Removed token for {server_url}")
        return token

    def token_status(self, server_url: str, buffer_seconds: int | None = None) -> TokenStatus:
        """Classify the stored token for a server.

        Args:
            server_url: The MCP server URL
            buffer_seconds: Expiry buffer; defaults to the manager's expiry_buffer

        Returns:
            Exactly one of NONE, EXPIRED, EXPIRES_SOON or VALID. Tokens
            without an expiry time are always VALID.
        """
        token = self.store.get(server_url)
        if token is None:
            return TokenStatus.NONE

        if buffer_seconds is None:
            buffer_seconds = self.expiry_buffer

        if token.is_expired():
            return TokenStatus.EXPIRED
        if token.expires_soon(buffer_seconds):
            return TokenStatus.EXPIRES_SOON
        return TokenStatus.VALID

    def needs_refresh(self, server_url: str) -> bool:
        """Check if the stored token is expired or inside the expiry buffer."""
        return self.store.needs_refresh(server_url, self.expiry_buffer)

    def list_servers(self) -> list[str]:
        """Normalized URLs of all servers with a stored token."""
        return self.store.servers()

    def clear_all(self) -> None:
        """Delete the token file and forget every token.

        Raises:
            TokenStoreError: If the file exists but cannot be deleted
        """
        self.store.clear()
        try:
            self.store_path.unlink(missing_ok=True)
        except OSError as e:
            raise TokenStoreError(f"Cannot delete token file {self.store_path}: {e}") from e
        logger.debug(f"Cleared all tokens from {self.store_path}")
