"""Credential primitives for the OAuth server.

Opaque token generation, PKCE (S256) verification, and the signed consent
token embedded in the authorize form. Everything here is a pure function
of its inputs.
"""

import base64
import hashlib
import hmac
import logging
import re
import secrets
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

# PKCE verifier rules (RFC 7636 section 4.1)
VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128
VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]+$")

CONSENT_ALGORITHM = "HS256"
CONSENT_TOKEN_TTL_SECONDS = 600
CONSENT_AUDIENCE = "authorize-consent"


def base64url_encode(data: bytes) -> str:
    """Base64url-encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def sha256_base64url(value: str) -> str:
    """Return base64url(sha256(value)), the S256 code challenge for a verifier."""
    return base64url_encode(hashlib.sha256(value.encode("utf-8")).digest())


def generate_token(n_bytes: int = 32) -> str:
    """Generate an opaque, URL-safe random token from ``n_bytes`` of entropy."""
    return base64url_encode(secrets.token_bytes(n_bytes))


def verify_pkce(verifier: str, challenge: str) -> bool:
    """Check a PKCE verifier against an S256 challenge.

    The verifier must be 43-128 characters from the unreserved set and hash
    to the challenge. A matching hash alone is not enough.
    """
    if not verifier or not challenge:
        return False

    if not VERIFIER_MIN_LENGTH <= len(verifier) <= VERIFIER_MAX_LENGTH:
        return False

    if not VERIFIER_PATTERN.match(verifier):
        return False

    return hmac.compare_digest(sha256_base64url(verifier).encode(), challenge.encode())


def secrets_match(candidate: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time equality for configured secrets."""
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


def create_consent_token(
    secret: str,
    client_id: str,
    redirect_uri: str,
    code_challenge: str,
    now: int,
    expires_in: int = CONSENT_TOKEN_TTL_SECONDS,
) -> str:
    """Create a signed consent token binding the authorize request.

    Args:
        secret: Server-side signing secret
        client_id: The OAuth client ID shown on the consent page
        redirect_uri: The redirect URI the code will be sent to
        code_challenge: The PKCE challenge the code will be bound to
        now: Current unix time
        expires_in: Token lifetime in seconds

    Returns:
        A signed JWT string
    """
    payload = {
        "aud": CONSENT_AUDIENCE,
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "code_challenge": code_challenge,
        "iat": now,
        "exp": now + expires_in,
        "jti": generate_token(16),
    }
    return jwt.encode(payload, secret, algorithm=CONSENT_ALGORITHM)


def verify_consent_token(
    token: str,
    secret: str,
    client_id: str,
    redirect_uri: str,
    code_challenge: str,
    now: int,
) -> bool:
    """Verify a consent token against the values being approved.

    Expiry is checked against ``now`` rather than the wall clock so the
    server's injected clock is authoritative.
    """
    if not token:
        return False

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[CONSENT_ALGORITHM],
            audience=CONSENT_AUDIENCE,
            options={"require": ["exp", "aud"], "verify_exp": False, "verify_iat": False},
        )
    except jwt.InvalidTokenError as e:
        logger.debug(f"[OAUTH] Invalid consent token: {e}")
        return False

    if payload["exp"] < now:
        logger.debug("[OAUTH] Consent token expired")
        return False

    return (
        payload.get("client_id") == client_id
        and payload.get("redirect_uri") == redirect_uri
        and payload.get("code_challenge") == code_challenge
    )
