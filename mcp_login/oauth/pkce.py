"""PKCE (Proof Key for Code Exchange) per RFC 7636, plus CSRF state values.

Every authorization request carries an S256 code challenge. Servers that
cannot verify S256 are rejected during discovery, never downgraded to
"plain".
"""

import base64
import hashlib
import secrets
import string
from dataclasses import dataclass


# Code verifier length limits from RFC 7636 Section 4.1
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 64

# Unreserved URI characters: [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"
VERIFIER_CHARS = string.ascii_letters + string.digits + "-._~"

STATE_LENGTH = 32
STATE_CHARS = string.ascii_letters + string.digits


@dataclass
class PKCEPair:
    """PKCE code verifier and challenge pair.

    The verifier stays on this machine until the token request.
    The challenge is sent with the authorization request.
    """

    verifier: str
    challenge: str
    method: str = "S256"


def generate_code_verifier(length: int = DEFAULT_VERIFIER_LENGTH) -> str:
    """Generate a random code verifier from the unreserved character set.

    Args:
        length: Number of characters (43-128, default 64)

    Returns:
        Code verifier string

    Raises:
        ValueError: If length is outside the RFC 7636 range
    """
    if length < MIN_VERIFIER_LENGTH or length > MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH}, got {length}"
        )

    return "".join(secrets.choice(VERIFIER_CHARS) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    """Compute the S256 challenge: BASE64URL-NOPAD(SHA256(verifier))."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce() -> tuple[str, str]:
    """Generate a fresh ``(verifier, challenge)`` tuple."""
    pair = generate_pkce_pair()
    return pair.verifier, pair.challenge


def generate_pkce_pair(length: int = DEFAULT_VERIFIER_LENGTH) -> PKCEPair:
    """Generate a complete PKCE pair with method S256.

    Args:
        length: Length of the code verifier (default 64)

    Returns:
        PKCEPair with verifier, challenge and method
    """
    verifier = generate_code_verifier(length)
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state() -> str:
    """Generate a 32-character alphanumeric anti-CSRF state value."""
    return "".join(secrets.choice(STATE_CHARS) for _ in range(STATE_LENGTH))
