"""Tests for PKCE and state generation."""

import base64
import hashlib
import string

import pytest

from mcp_login.oauth.pkce import (
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    VERIFIER_CHARS,
    PKCEPair,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce,
    generate_pkce_pair,
    generate_state,
)


class TestGenerateCodeVerifier:
    """Tests for generate_code_verifier function."""

    def test_default_length(self) -> None:
        """Test that the default verifier has 64 characters."""
        assert len(generate_code_verifier()) == 64

    def test_uses_unreserved_characters(self) -> None:
        """Test that only unreserved URI characters are used."""
        verifier = generate_code_verifier(128)
        assert set(verifier) <= set(VERIFIER_CHARS)

    @pytest.mark.parametrize("length", [MIN_VERIFIER_LENGTH, MAX_VERIFIER_LENGTH])
    def test_accepts_boundary_lengths(self, length: int) -> None:
        """Test that lengths at the RFC 7636 limits are accepted."""
        assert len(generate_code_verifier(length)) == length

    @pytest.mark.parametrize("length", [42, 129])
    def test_rejects_out_of_range_lengths(self, length: int) -> None:
        """Test that lengths outside 43..128 raise ValueError."""
        with pytest.raises(ValueError, match="must be between"):
            generate_code_verifier(length)

    def test_verifiers_are_unique(self) -> None:
        """Test that repeated calls give different verifiers."""
        assert len({generate_code_verifier() for _ in range(20)}) == 20


class TestGenerateCodeChallenge:
    """Tests for generate_code_challenge function."""

    def test_rfc7636_appendix_b_example(self) -> None:
        """Test against the worked example in RFC 7636 Appendix B."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_no_padding(self) -> None:
        """Test that the challenge is unpadded base64url."""
        challenge = generate_code_challenge(generate_code_verifier())
        assert "=" not in challenge
        assert "+" not in challenge
        assert "/" not in challenge
        assert len(challenge) == 43


class TestGeneratePkce:
    """Tests for generate_pkce and generate_pkce_pair."""

    def test_challenge_recomputes_from_verifier(self) -> None:
        """Test that the challenge equals base64url(sha256(verifier))."""
        verifier, challenge = generate_pkce()
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        expected = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
        assert challenge == expected

    def test_pair_uses_s256(self) -> None:
        """Test that the pair carries method S256 and a matching challenge."""
        pair = generate_pkce_pair()
        assert isinstance(pair, PKCEPair)
        assert pair.method == "S256"
        assert pair.challenge == generate_code_challenge(pair.verifier)


class TestGenerateState:
    """Tests for generate_state function."""

    def test_state_is_32_alphanumeric_characters(self) -> None:
        """Test the state format."""
        state = generate_state()
        assert len(state) == 32
        assert set(state) <= set(string.ascii_letters + string.digits)

    def test_states_are_unique(self) -> None:
        """Test that repeated calls give different states."""
        assert generate_state() != generate_state()


class TestPublicApi:
    """Tests for the oauth package exports."""

    def test_pkce_and_state_exported(self) -> None:
        """Test that the PKCE and state generators are importable from the package."""
        import mcp_login.oauth as oauth

        assert oauth.generate_pkce is generate_pkce
        assert oauth.generate_state is generate_state
        assert {"generate_pkce", "generate_state"} <= set(oauth.__all__)
