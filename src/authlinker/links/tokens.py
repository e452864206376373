"""Link token generation and hash binding."""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string

TOKEN_CHARSET = string.ascii_uppercase + string.ascii_lowercase + string.digits  # A-Z, a-z, 0-9


def generate_token(length: int) -> str:
    """Generate a random alphanumeric token. Not unique on its own."""
    if length <= 0:
        msg = "token length must be positive"
        raise ValueError(msg)
    return "".join(secrets.choice(TOKEN_CHARSET) for _ in range(length))


def compute_link_hash(plain_base64: str, token: str, salt: str) -> str:
    """
    Bind a payload to its token.

    The input is always the plain (never obfuscated or encrypted) base64 form of
    the canonical payload, so verifiers can recompute it after decoding with any
    codec.
    """
    return hashlib.sha256((plain_base64 + token + salt).encode("utf-8")).hexdigest()


def hashes_match(expected: str, supplied: str) -> bool:
    """Constant-time comparison of two hex digests."""
    return hmac.compare_digest(expected.encode("ascii", "replace"), supplied.encode("ascii", "replace"))
