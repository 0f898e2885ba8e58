"""
Unit tests for the credential primitives (oauth/credentials.py).

PKCE verification must enforce all three rules: verifier length,
verifier character set, and the S256 hash match.
"""

import base64
import hashlib

import pytest

from oauth.credentials import (
    create_consent_token,
    generate_token,
    secrets_match,
    sha256_base64url,
    verify_consent_token,
    verify_pkce,
)

# 43 characters covering every class of the unreserved set
VERIFIER = "Zx9-Ab3._~Kq7LmN2pQrStUvWy0123456789abcdefG"
CHALLENGE = base64.urlsafe_b64encode(hashlib.sha256(VERIFIER.encode()).digest()).rstrip(b"=").decode()


class TestGenerateToken:
    def test_tokens_are_urlsafe_without_padding(self):
        token = generate_token(32)

        assert "=" not in token
        assert "+" not in token and "/" not in token
        # 32 bytes -> 43 base64url characters
        assert len(token) == 43

    def test_tokens_are_unique(self):
        tokens = {generate_token(24) for _ in range(200)}
        assert len(tokens) == 200


class TestVerifyPkce:
    def test_matches_independent_hash(self):
        assert sha256_base64url(VERIFIER) == CHALLENGE
        assert verify_pkce(VERIFIER, CHALLENGE)

    def test_generated_pairs_verify(self):
        for _ in range(20):
            verifier = generate_token(48)
            assert verify_pkce(verifier, sha256_base64url(verifier))

    def test_any_single_character_mutation_fails(self):
        """Changing any one character of the verifier breaks verification."""
        assert verify_pkce(VERIFIER, CHALLENGE)

        for i, ch in enumerate(VERIFIER):
            replacement = "a" if ch != "a" else "b"
            mutated = VERIFIER[:i] + replacement + VERIFIER[i + 1:]
            assert not verify_pkce(mutated, CHALLENGE), f"mutation at {i} accepted"

    @pytest.mark.parametrize("length", [42, 129])
    def test_length_out_of_bounds_rejected_even_if_hash_matches(self, length):
        verifier = "a" * length
        assert not verify_pkce(verifier, sha256_base64url(verifier))

    @pytest.mark.parametrize("length", [43, 128])
    def test_length_bounds_inclusive(self, length):
        verifier = "a" * length
        assert verify_pkce(verifier, sha256_base64url(verifier))

    @pytest.mark.parametrize("bad_char", [" ", "+", "/", "=", "é", "!"])
    def test_disallowed_characters_rejected_even_if_hash_matches(self, bad_char):
        verifier = "a" * 42 + bad_char
        assert not verify_pkce(verifier, sha256_base64url(verifier))

    def test_empty_values_rejected(self):
        assert not verify_pkce("", CHALLENGE)
        assert not verify_pkce(VERIFIER, "")

    def test_non_ascii_challenge_does_not_raise(self):
        assert not verify_pkce(VERIFIER, "challenge-ü")


class TestSecretsMatch:
    def test_exact_match(self):
        assert secrets_match("secret", "secret")

    def test_mismatch_and_missing(self):
        assert not secrets_match("secret", "Secret")
        assert not secrets_match(None, "secret")
        assert not secrets_match("secret", None)
        assert not secrets_match("", "")


class TestConsentToken:
    SECRET = "consent-secret"
    NOW = 1_700_000_000

    def make(self, **overrides):
        values = {
            "client_id": "client-1",
            "redirect_uri": "https://client.example/cb",
            "code_challenge": CHALLENGE,
            "now": self.NOW,
        }
        values.update(overrides)
        return create_consent_token(self.SECRET, **values)

    def verify(self, token, **overrides):
        values = {
            "client_id": "client-1",
            "redirect_uri": "https://client.example/cb",
            "code_challenge": CHALLENGE,
            "now": self.NOW,
        }
        values.update(overrides)
        return verify_consent_token(token, self.SECRET, **values)

    def test_valid_token_accepted(self):
        assert self.verify(self.make())

    def test_bound_values_must_match(self):
        token = self.make()

        assert not self.verify(token, client_id="client-2")
        assert not self.verify(token, redirect_uri="https://other.example/cb")
        assert not self.verify(token, code_challenge="other")

    def test_expired_token_rejected(self):
        token = self.make()

        assert self.verify(token, now=self.NOW + 600)
        assert not self.verify(token, now=self.NOW + 601)

    def test_wrong_secret_rejected(self):
        token = create_consent_token(
            "other-secret", "client-1", "https://client.example/cb", CHALLENGE, self.NOW
        )
        assert not self.verify(token)

    def test_garbage_rejected(self):
        assert not self.verify("not-a-token")
        assert not self.verify("")
