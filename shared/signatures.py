"""
Webhook payload signing.

Outbound deliveries carry ``X-Webhook-Signature``: the hex HMAC-SHA256 of the
exact request body bytes, keyed with the webhook's secret. Receivers
recompute it with ``verify_signature``.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Union

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_ID_HEADER = "X-Webhook-ID"


def _as_bytes(body: Union[str, bytes]) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def sign_payload(secret: str, body: Union[str, bytes]) -> str:
    """Return the hex HMAC-SHA256 of *body* keyed with *secret*."""
    return hmac.new(secret.encode("utf-8"), _as_bytes(body), hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: Union[str, bytes], signature: str) -> bool:
    """Constant-time check of a received ``X-Webhook-Signature`` value."""
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature.strip().lower())
