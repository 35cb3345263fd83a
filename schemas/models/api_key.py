"""
API key document models.

ApiKeyDoc maps to the `api-keys` collection. key_hash stores
SHA-256(raw_key) — the raw key is shown once at creation and never stored.
key_prefix (first 8 chars of the random part) is unique and used for O(1)
lookup; it cannot be turned back into the secret.

ApiRequestLogDoc maps to `api-request-logs`: one row per request made with a
key, used for error accounting and the per-key stats query.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from schemas.models.base import AuditedDoc, MongoBaseModel, PyObjectId, UTCDateTime
from shared.rate_limit import RateLimit


class ApiKeyDoc(AuditedDoc):
    """Document model for the `api-keys` collection."""

    name: str
    description: Optional[str] = None
    key_prefix: str
    key_hash: str
    scopes: list[str] = []
    rate_limit: RateLimit = Field(default_factory=RateLimit)
    allowed_ips: Optional[list[str]] = None
    is_active: bool = True
    expires_at: Optional[UTCDateTime] = None
    total_requests: int = Field(default=0, ge=0)
    total_errors: int = Field(default=0, ge=0)
    last_used_at: Optional[UTCDateTime] = None
    revoked_at: Optional[UTCDateTime] = None
    revoked_reason: Optional[str] = None
    revoked_by: Optional[str] = None


class ApiRequestLogDoc(MongoBaseModel):
    """Document model for the `api-request-logs` collection."""

    api_key_id: PyObjectId
    owner_id: str
    method: str
    path: str
    status_code: int
    response_time_ms: float = Field(default=0.0, ge=0)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: UTCDateTime
