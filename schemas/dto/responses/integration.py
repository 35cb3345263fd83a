"""
Response DTOs for external integration endpoints.

IntegrationResponse       — one connection record
IntegrationEventResponse  — one logged event
IntegrationHealth         — GET /api/v1/integrations/{integration_id}/health
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.integration import ExternalIntegrationDoc, IntegrationEventDoc
from shared.datetime_utils import to_timestamp

HealthStatus = Literal["healthy", "degraded", "unhealthy", "unknown"]


class IntegrationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    integration_id: str
    name: str
    provider: str
    type: str
    config: dict[str, Any]
    status: str
    is_connected: bool
    connection_error: Optional[str] = None
    sync_status: Optional[str] = None
    total_requests: int
    successful_requests: int
    failed_requests: int
    created_at: Optional[int] = None
    last_connected_at: Optional[int] = None
    last_disconnected_at: Optional[int] = None
    last_synced_at: Optional[int] = None

    @classmethod
    def from_doc(cls, doc: ExternalIntegrationDoc) -> "IntegrationResponse":
        return cls(
            id=doc.public_id or str(doc.id),
            integration_id=str(doc.id),
            name=doc.name,
            provider=doc.provider,
            type=doc.type,
            config=doc.config,
            status=doc.status,
            is_connected=doc.is_connected,
            connection_error=doc.connection_error,
            sync_status=doc.sync_status,
            total_requests=doc.total_requests,
            successful_requests=doc.successful_requests,
            failed_requests=doc.failed_requests,
            created_at=to_timestamp(doc.created_at),
            last_connected_at=to_timestamp(doc.last_connected_at),
            last_disconnected_at=to_timestamp(doc.last_disconnected_at),
            last_synced_at=to_timestamp(doc.last_synced_at),
        )


class IntegrationEventResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    integration_id: str
    event_type: str
    direction: str
    status: str
    error: Optional[str] = None
    processing_time_ms: Optional[float] = None
    timestamp: int

    @classmethod
    def from_doc(cls, doc: IntegrationEventDoc) -> "IntegrationEventResponse":
        return cls(
            id=str(doc.id),
            integration_id=str(doc.integration_id),
            event_type=doc.event_type,
            direction=doc.direction,
            status=doc.status,
            error=doc.error,
            processing_time_ms=doc.processing_time_ms,
            timestamp=to_timestamp(doc.timestamp),
        )


class IntegrationHealth(BaseModel):
    """Health figures computed over the most recent events; nothing is stored."""

    model_config = ConfigDict(populate_by_name=True)

    integration_id: str
    health_status: HealthStatus
    total_events: int
    successful_events: int
    failed_events: int
    pending_events: int
    success_rate: float
    average_processing_time_ms: Optional[float] = None
    last_event_at: Optional[int] = None


class IntegrationsListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    integrations: list[IntegrationResponse]


class IntegrationEventsListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    events: list[IntegrationEventResponse]
