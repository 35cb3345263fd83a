"""
Request DTOs for API key management endpoints.

CreateApiKeyRequest — POST /api/v1/keys
UpdateApiKeyRequest — PATCH /api/v1/keys/{key_id}
RevokeApiKeyRequest — POST /api/v1/keys/{key_id}/revoke
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from schemas.dto.requests.common import (
    SCOPES_MAX,
    check_description,
    check_ip_rules,
    check_name,
    check_string_set,
    coerce_datetime,
)
from shared.rate_limit import RateLimit

ALLOWED_IPS_MAX = 100


class CreateApiKeyRequest(BaseModel):
    """Request body for POST /api/v1/keys.

    ``rate_limit`` falls back to the configured defaults when omitted.
    ``expires_at`` must lie in the future; the service checks it against its
    clock.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    scopes: list[str]
    rate_limit: Optional[RateLimit] = None
    allowed_ips: Optional[list[str]] = None
    # ISO 8601 string or Unix epoch seconds; null means no expiration
    expires_at: Optional[datetime] = None

    @field_validator("name", mode="after")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        return check_name(v)

    @field_validator("description", mode="after")
    @classmethod
    def _validate_description(cls, v: Optional[str]) -> Optional[str]:
        return check_description(v)

    @field_validator("scopes", mode="after")
    @classmethod
    def _validate_scopes(cls, v: list[str]) -> list[str]:
        return check_string_set(v, "scopes", max_items=SCOPES_MAX)

    @field_validator("allowed_ips", mode="after")
    @classmethod
    def _validate_allowed_ips(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return None
        return check_ip_rules(v, ALLOWED_IPS_MAX) or None

    @field_validator("expires_at", mode="before")
    @classmethod
    def _parse_expires_at(cls, v: Any) -> Optional[datetime]:
        return coerce_datetime(v)


class UpdateApiKeyRequest(BaseModel):
    """Request body for PATCH /api/v1/keys/{key_id}.

    Only provided fields change. The key material (hash and prefix) cannot be
    updated; rotating a key means creating a new one and revoking the old.
    Unknown fields are rejected rather than ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    scopes: Optional[list[str]] = None
    rate_limit: Optional[RateLimit] = None
    allowed_ips: Optional[list[str]] = None
    expires_at: Optional[datetime] = None

    @field_validator("name", mode="after")
    @classmethod
    def _validate_name(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else check_name(v)

    @field_validator("description", mode="after")
    @classmethod
    def _validate_description(cls, v: Optional[str]) -> Optional[str]:
        return check_description(v)

    @field_validator("scopes", mode="after")
    @classmethod
    def _validate_scopes(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else check_string_set(v, "scopes", max_items=SCOPES_MAX)

    @field_validator("allowed_ips", mode="after")
    @classmethod
    def _validate_allowed_ips(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else check_ip_rules(v, ALLOWED_IPS_MAX)

    @field_validator("expires_at", mode="before")
    @classmethod
    def _parse_expires_at(cls, v: Any) -> Optional[datetime]:
        return coerce_datetime(v)

    @model_validator(mode="after")
    def _require_a_change(self) -> "UpdateApiKeyRequest":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually sent, ready for a Mongo ``$set``."""
        return self.model_dump(exclude_unset=True)


class RevokeApiKeyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: Optional[str] = None
