"""OAuth token and client configuration data structures.

StoredToken is the record persisted per server by the credential store.
OAuthConfig is the caller-supplied client configuration for one login.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TYPE = "Bearer"


def _utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class StoredToken:
    """An access token plus the metadata needed to judge and renew it.

    Attributes:
        access_token: The access token string
        refresh_token: Optional refresh token for obtaining new access tokens
        expires_at: When the access token expires (UTC); None if it never does
        token_type: Token type, "Bearer" when the server omitted it
        scopes: Granted scopes, in the order the server listed them
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = DEFAULT_TOKEN_TYPE
    scopes: list[str] = field(default_factory=list)

    def is_expired(self) -> bool:
        """Check if the expiry time has passed. Never true without expires_at."""
        if self.expires_at is None:
            return False
        return _utc(self.expires_at) <= datetime.now(timezone.utc)

    def expires_soon(self, buffer_seconds: int) -> bool:
        """Check if the token expires within ``buffer_seconds`` from now.

        Already-expired tokens also count. Tokens without expires_at never do.
        """
        if self.expires_at is None:
            return False
        deadline = datetime.now(timezone.utc) + timedelta(seconds=buffer_seconds)
        return _utc(self.expires_at) <= deadline

    def has_refresh_token(self) -> bool:
        """Check if this token has a refresh token."""
        return bool(self.refresh_token)

    def get_auth_header(self) -> str:
        """Get the Authorization header value for this token."""
        # RFC 6750 spelling, whatever casing the server used for token_type
        return f"Bearer {self.access_token}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the JSON token store. Unset optional fields are omitted."""
        data: dict[str, Any] = {"access_token": self.access_token}

        if self.refresh_token:
            data["refresh_token"] = self.refresh_token

        if self.expires_at:
            data["expires_at"] = _utc(self.expires_at).isoformat()

        data["token_type"] = self.token_type
        data["scopes"] = list(self.scopes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredToken":
        """Deserialize a record written by to_dict.

        Raises:
            KeyError: If access_token is missing
            ValueError: If expires_at is not an ISO-8601 timestamp
        """
        expires_at = None
        if data.get("expires_at"):
            expires_at = _utc(datetime.fromisoformat(data["expires_at"]))

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            token_type=data.get("token_type") or DEFAULT_TOKEN_TYPE,
            scopes=list(data.get("scopes") or []),
        )

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> "StoredToken":
        """Normalize a token endpoint response into a StoredToken.

        - expires_at is now + expires_in, and stays None when expires_in is absent
        - a blank or missing token_type becomes "Bearer"
        - the space-separated scope string is split into a list

        Raises:
            KeyError: If access_token is missing
            ValueError: If expires_in is not a number in range, or a string
                field has another type
        """
        access_token = response["access_token"]
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("access_token must be a non-empty string")

        for key in ("refresh_token", "token_type", "scope"):
            if response.get(key) is not None and not isinstance(response[key], str):
                raise ValueError(f"{key} must be a string")

        expires_at = None
        expires_in = response.get("expires_in")
        if expires_in is not None:
            try:
                expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            except OverflowError as e:
                raise ValueError(f"expires_in out of range: {expires_in!r}") from e

        scope = response.get("scope") or ""

        return cls(
            access_token=access_token,
            refresh_token=response.get("refresh_token") or None,
            expires_at=expires_at,
            token_type=response.get("token_type") or DEFAULT_TOKEN_TYPE,
            scopes=scope.split(),
        )


@dataclass(frozen=True)
class OAuthConfig:
    """OAuth client configuration supplied by the caller for one server.

    Public clients (like CLIs) usually have no client_secret. When
    auth_server_url is given, protected-resource discovery is skipped.
    """

    client_id: str
    client_secret: str | None = None
    scopes: tuple[str, ...] = ()
    auth_server_url: str | None = None

    def is_confidential(self) -> bool:
        """Check if this is a confidential client (has a secret)."""
        return bool(self.client_secret)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the config-file ``auth`` object."""
        data: dict[str, Any] = {"type": "oauth", "client_id": self.client_id}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        if self.scopes:
            data["scopes"] = list(self.scopes)
        if self.auth_server_url:
            data["auth_server_url"] = self.auth_server_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthConfig":
        """Deserialize from a config-file ``auth`` object.

        ``scopes`` may be a list or a single space-separated string.
        """
        scopes = data.get("scopes") or ()
        if isinstance(scopes, str):
            scopes = scopes.split()

        return cls(
            client_id=data["client_id"],
            client_secret=data.get("client_secret") or None,
            scopes=tuple(scopes),
            auth_server_url=data.get("auth_server_url") or None,
        )
