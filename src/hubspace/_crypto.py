"""Internal PKCE helpers for the Hubspace authorization-code flow."""

from __future__ import annotations

import base64
import secrets

from Crypto.Hash import SHA256

# RFC 7636 unreserved characters
_VERIFIER_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def code_challenge(verifier: str) -> str:
    """Derive the ``S256`` code challenge for *verifier*.

    ``BASE64URL(SHA256(ASCII(code_verifier)))`` without padding, as in
    RFC 7636 section 4.2.
    """
    digest: bytes = SHA256.new(verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_code_verifier(length: int = 128) -> str:
    """Return a fresh random PKCE code verifier.

    *length* must be between 43 and 128 characters.
    """
    if not 43 <= length <= 128:
        raise ValueError(f"PKCE verifier length must be 43..128, got {length}.")
    return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(length))
