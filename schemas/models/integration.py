"""
External integration document models.

ExternalIntegrationDoc — `external-integrations`: connection records to
                         third-party automation platforms (Zapier, Make, n8n…).
IntegrationEventDoc    — `integration-events`: append-only activity log. Rows
                         are written once and never updated; health figures
                         are computed from them at read time.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import Field

from schemas.models.base import AuditedDoc, MongoBaseModel, PyObjectId, UTCDateTime

IntegrationType = Literal["automation", "auth", "api", "webhook"]
IntegrationStatus = Literal["connected", "disconnected", "error", "pending"]
SyncStatus = Literal["success", "failed", "in_progress"]
EventDirection = Literal["inbound", "outbound"]
EventStatus = Literal["success", "failed", "pending"]

AUTOMATION_PLATFORMS = frozenset({"zapier", "make", "n8n", "custom"})

TEST_CONNECTION_EVENT = "test.connection"


class ExternalIntegrationDoc(AuditedDoc):
    """Document model for the `external-integrations` collection."""

    name: str
    provider: str
    type: IntegrationType
    config: dict[str, Any] = {}
    status: IntegrationStatus = "disconnected"
    is_connected: bool = False
    connection_error: Optional[str] = None
    last_connected_at: Optional[UTCDateTime] = None
    last_disconnected_at: Optional[UTCDateTime] = None
    sync_status: Optional[SyncStatus] = None
    last_synced_at: Optional[UTCDateTime] = None
    total_requests: int = Field(default=0, ge=0)
    successful_requests: int = Field(default=0, ge=0)
    failed_requests: int = Field(default=0, ge=0)
    metadata: Optional[dict[str, Any]] = None


class IntegrationEventDoc(MongoBaseModel):
    """Document model for the `integration-events` collection."""

    integration_id: PyObjectId
    event_type: str
    direction: EventDirection
    status: EventStatus
    request: Optional[str] = None
    response: Optional[str] = None
    error: Optional[str] = None
    processing_time_ms: Optional[float] = None
    timestamp: UTCDateTime
    created_by: Optional[str] = None
