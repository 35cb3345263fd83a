"""
Cryptographic helpers — credential hashing and comparison.

Every secret this service mints (API keys, client secrets, access/refresh
tokens, authorization codes) is stored only as SHA-256(plaintext). The hash is
deterministic so presented credentials can be looked up and compared; the
comparison itself is constant-time.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

from shared.generators import generate_secure_token

API_KEY_MARKER = "sk_"
API_KEY_PREFIX_LENGTH = 8


@dataclass(frozen=True)
class GeneratedSecret:
    """A freshly minted secret. ``plaintext`` must be shown once and dropped."""

    plaintext: str
    prefix: str
    hash: str


def hash_token(token: str) -> str:
    """Return the hex-encoded SHA-256 digest of *token*.

    Args:
        token: The plaintext token string to hash.

    Returns:
        64-character lowercase hex string.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token(token: str, token_hash: Optional[str]) -> bool:
    """Return True when *token* hashes to *token_hash*.

    Uses ``hmac.compare_digest`` so the comparison time does not depend on
    how many leading characters match.
    """
    if not token_hash:
        return False
    return hmac.compare_digest(hash_token(token), token_hash)


def digests_match(presented_hash: str, stored_hash: Optional[str]) -> bool:
    """Constant-time comparison of two hex digests."""
    if not stored_hash:
        return False
    return hmac.compare_digest(presented_hash.encode("utf-8"), stored_hash.encode("utf-8"))


def generate_secret(
    byte_length: int = 32,
    *,
    prefix_length: int = API_KEY_PREFIX_LENGTH,
    marker: str = "",
) -> GeneratedSecret:
    """Generate a random secret with its lookup prefix and digest.

    Args:
        byte_length: Random bytes before base64url encoding.
        prefix_length: Length of the non-secret lookup slice taken from the
            random part (never from *marker*).
        marker: Optional human-readable marker prepended to the plaintext
            (e.g. ``"sk_"``). The hash covers the random part only, so the
            marker can change without invalidating stored keys.

    Returns:
        GeneratedSecret(plaintext, prefix, hash)
    """
    raw = generate_secure_token(byte_length)
    return GeneratedSecret(
        plaintext=f"{marker}{raw}",
        prefix=raw[:prefix_length],
        hash=hash_token(raw),
    )


def generate_api_key() -> GeneratedSecret:
    """Generate an API key of the form ``sk_<random>``."""
    return generate_secret(32, marker=API_KEY_MARKER)


def split_api_key(raw_key: str) -> Optional[tuple[str, str]]:
    """Split a presented API key into ``(prefix, hash)``.

    Returns None when *raw_key* is not shaped like a key this service issued.
    """
    raw_key = (raw_key or "").strip()
    if not raw_key.startswith(API_KEY_MARKER):
        return None
    body = raw_key[len(API_KEY_MARKER):]
    if len(body) <= API_KEY_PREFIX_LENGTH:
        return None
    return body[:API_KEY_PREFIX_LENGTH], hash_token(body)
