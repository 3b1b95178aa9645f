"""PKCE (Proof Key for Code Exchange) implementation per RFC 7636.

The Viessmann identity provider only accepts the S256 challenge method, so
every authorization attempt carries a fresh verifier/challenge pair.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass


# 32 random bytes = 256 bits of entropy, 43 base64url characters
MIN_VERIFIER_BYTES = 32
DEFAULT_VERIFIER_BYTES = 32


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair.

    The verifier is a cryptographically random string sent in the token request.
    The challenge is a SHA256 hash of the verifier sent in the authorization request.
    """

    verifier: str
    challenge: str
    method: str = "S256"


def generate_code_verifier(num_bytes: int = DEFAULT_VERIFIER_BYTES) -> str:
    """Generate a cryptographically random code verifier.

    The verifier is the base64url encoding (without padding) of ``num_bytes``
    random bytes, so it only ever contains unreserved URI characters.

    Args:
        num_bytes: Amount of randomness to draw (default 32, minimum 32)

    Returns:
        Cryptographically random code verifier string

    Raises:
        ValueError: If fewer than 32 bytes are requested
    """
    if num_bytes < MIN_VERIFIER_BYTES:
        raise ValueError(
            f"Code verifier needs at least {MIN_VERIFIER_BYTES} random bytes, got {num_bytes}"
        )

    return secrets.token_urlsafe(num_bytes)


def generate_code_challenge(verifier: str) -> str:
    """Generate S256 code challenge from verifier.

    Per RFC 7636 Section 4.2:
    code_challenge = BASE64URL(SHA256(code_verifier))

    Args:
        verifier: The code verifier string

    Returns:
        Base64URL-encoded SHA256 hash of the verifier
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()

    # Base64URL encode without padding (per RFC 7636)
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_pair(num_bytes: int = DEFAULT_VERIFIER_BYTES) -> PKCEPair:
    """Generate a complete PKCE pair (verifier + challenge)."""
    verifier = generate_code_verifier(num_bytes)
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state() -> str:
    """Generate a cryptographically random state parameter.

    Returns:
        32-character random hex string
    """
    return secrets.token_hex(16)
