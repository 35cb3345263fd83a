"""
Random identifier and token generators — pure, side-effect-free functions.

All generators use the ``secrets`` module; nothing here is derived from
predictable state.
"""

from __future__ import annotations

import secrets
import string

_ALPHANUMERIC = string.ascii_lowercase + string.ascii_uppercase + string.digits


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure URL-safe random token.

    Args:
        length: Number of random bytes before base64 encoding (default 32).
            The resulting string will be longer than *length* characters.

    Returns:
        URL-safe base64-encoded token string.
    """
    return secrets.token_urlsafe(length)


def generate_public_id(prefix: str = "", length: int = 16) -> str:
    """Generate a caller-facing identifier such as ``whk_3kT9…``.

    Args:
        prefix: Entity marker prepended to the random part.
        length: Number of alphanumeric characters in the random part.
    """
    return prefix + "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def generate_client_id() -> str:
    """Generate a public OAuth client identifier."""
    return f"cid_{secrets.token_hex(16)}"


def generate_client_secret() -> str:
    """Generate an OAuth client secret (shown once, stored hashed)."""
    return f"cs_{secrets.token_urlsafe(32)}"


def generate_access_token() -> str:
    return f"at_{secrets.token_urlsafe(32)}"


def generate_refresh_token() -> str:
    return f"rt_{secrets.token_urlsafe(48)}"


def generate_authorization_code() -> str:
    return secrets.token_urlsafe(32)


def generate_webhook_secret() -> str:
    """Generate an HMAC signing key for a webhook endpoint."""
    return f"whsec_{secrets.token_urlsafe(32)}"
