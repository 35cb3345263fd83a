"""
Request DTOs for external integration endpoints.

ConnectIntegrationRequest — POST /api/v1/integrations
UpdateIntegrationRequest  — PATCH /api/v1/integrations/{integration_id}
LogIntegrationEventRequest — POST /api/v1/integrations/{integration_id}/events
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from schemas.dto.requests.common import check_name
from schemas.models.integration import (
    AUTOMATION_PLATFORMS,
    EventDirection,
    EventStatus,
    IntegrationType,
    SyncStatus,
)


class ConnectIntegrationRequest(BaseModel):
    """Request body for POST /api/v1/integrations.

    Automation platforms (zapier, make, n8n, custom) connect immediately;
    other providers are recorded as ``pending`` until a sync succeeds.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    provider: str
    type: IntegrationType = "automation"
    config: dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[dict[str, Any]] = None

    @field_validator("name", mode="after")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        return check_name(v)

    @field_validator("provider", mode="after")
    @classmethod
    def _normalise_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("provider is required")
        return v

    @model_validator(mode="after")
    def _automation_provider_known(self) -> "ConnectIntegrationRequest":
        if self.type == "automation" and self.provider not in AUTOMATION_PLATFORMS:
            raise ValueError(
                f"automation provider must be one of: {', '.join(sorted(AUTOMATION_PLATFORMS))}"
            )
        return self


class UpdateIntegrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    config: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("name", mode="after")
    @classmethod
    def _validate_name(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else check_name(v)

    @model_validator(mode="after")
    def _require_a_change(self) -> "UpdateIntegrationRequest":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class LogIntegrationEventRequest(BaseModel):
    """Request body for POST /api/v1/integrations/{integration_id}/events."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(min_length=1, max_length=200)
    direction: EventDirection
    status: EventStatus
    request: Optional[str] = None
    response: Optional[str] = None
    error: Optional[str] = None
    processing_time_ms: Optional[float] = Field(default=None, ge=0)


class RecordSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: SyncStatus
    error: Optional[str] = None
