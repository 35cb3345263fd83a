"""
Response DTOs for API key endpoints.

ApiKeyValidation      — result of validating a presented key (never raised)
ApiKeyResponse        — one key entry in GET /api/v1/keys
ApiKeyCreatedResult   — POST /api/v1/keys (201) — includes ``token`` once
ApiKeysListResponse   — GET /api/v1/keys (200)
ApiKeyStats           — GET /api/v1/keys/{key_id}/stats (200)

Timestamps are Unix timestamp integers.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from schemas.models.api_key import ApiKeyDoc
from shared.datetime_utils import to_timestamp
from shared.rate_limit import RateLimit


class ApiKeyValidation(BaseModel):
    """Outcome of an API key check.

    Serialised in camelCase (``keyId``, ``rateLimit``) for callers of the
    validation endpoint. ``error`` is one of ``invalid_api_key``,
    ``api_key_revoked``, ``api_key_expired`` or ``ip_not_allowed``.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    valid: bool
    key_id: Optional[str] = None
    owner_id: Optional[str] = None
    scopes: Optional[list[str]] = None
    rate_limit: Optional[RateLimit] = None
    error: Optional[str] = None


class ApiKeyResponse(BaseModel):
    """A single API key as shown to its owner.

    The full token is never returned here — only ``key_prefix`` for display.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    key_id: str
    name: str
    description: Optional[str] = None
    key_prefix: str
    scopes: list[str]
    rate_limit: RateLimit
    allowed_ips: Optional[list[str]] = None
    is_active: bool
    total_requests: int
    total_errors: int
    created_at: Optional[int] = None
    expires_at: Optional[int] = None
    last_used_at: Optional[int] = None
    revoked_at: Optional[int] = None
    revoked_reason: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: ApiKeyDoc) -> "ApiKeyResponse":
        return cls(
            id=doc.public_id or str(doc.id),
            key_id=str(doc.id),
            name=doc.name,
            description=doc.description,
            key_prefix=doc.key_prefix,
            scopes=doc.scopes,
            rate_limit=doc.rate_limit,
            allowed_ips=doc.allowed_ips,
            is_active=doc.is_active,
            total_requests=doc.total_requests,
            total_errors=doc.total_errors,
            created_at=to_timestamp(doc.created_at),
            expires_at=to_timestamp(doc.expires_at),
            last_used_at=to_timestamp(doc.last_used_at),
            revoked_at=to_timestamp(doc.revoked_at),
            revoked_reason=doc.revoked_reason,
        )


class ApiKeyCreatedResult(ApiKeyResponse):
    """Response for POST /api/v1/keys (201).

    This is the ONLY time the plaintext ``token`` is returned — it is hashed
    before storage.
    """

    token: str

    @classmethod
    def from_doc_with_token(cls, doc: ApiKeyDoc, token: str) -> "ApiKeyCreatedResult":
        return cls(**ApiKeyResponse.from_doc(doc).model_dump(), token=token)


class ApiKeysListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    keys: list[ApiKeyResponse]


class ApiKeyStats(BaseModel):
    """Usage figures for one key; ``recent_*`` covers the latest 100 logged requests."""

    model_config = ConfigDict(populate_by_name=True)

    key_id: str
    is_active: bool
    total_requests: int
    total_errors: int
    recent_successful_requests: int
    recent_failed_requests: int
    average_response_time_ms: Optional[float] = None
    last_used_at: Optional[int] = None
    expires_at: Optional[int] = None
