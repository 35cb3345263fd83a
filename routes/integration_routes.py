"""
External integration endpoints (caller JWT required).

POST  /api/v1/integrations                           — create / connect
GET   /api/v1/integrations                           — list (optional ?provider=)
GET   /api/v1/integrations/{integration_id}          — one integration
PATCH /api/v1/integrations/{integration_id}          — update name, config, metadata
POST  /api/v1/integrations/{integration_id}/connect
POST  /api/v1/integrations/{integration_id}/disconnect
POST  /api/v1/integrations/{integration_id}/sync     — record a sync outcome
POST  /api/v1/integrations/{integration_id}/test     — log a pending test.connection event
POST  /api/v1/integrations/{integration_id}/events   — append an event
GET   /api/v1/integrations/{integration_id}/events   — recent events
GET   /api/v1/integrations/{integration_id}/health   — health over the latest events
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from dependencies import get_caller, get_integration_service
from schemas.dto.requests.integration import (
    ConnectIntegrationRequest,
    LogIntegrationEventRequest,
    RecordSyncRequest,
    UpdateIntegrationRequest,
)
from schemas.dto.responses.integration import (
    IntegrationEventResponse,
    IntegrationEventsListResponse,
    IntegrationHealth,
    IntegrationResponse,
    IntegrationsListResponse,
)
from services.access import Caller
from services.integration_service import IntegrationService

router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])


@router.post("", status_code=201, response_model=IntegrationResponse)
async def create_integration(
    body: ConnectIntegrationRequest,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationResponse:
    return await service.create_integration(caller, body)


@router.get("", response_model=IntegrationsListResponse)
async def list_integrations(
    provider: Optional[str] = Query(default=None),
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationsListResponse:
    return IntegrationsListResponse(
        integrations=await service.list_for_owner(caller, provider)
    )


@router.get("/{integration_id}", response_model=IntegrationResponse)
async def get_integration(
    integration_id: str,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationResponse:
    return await service.get(caller, integration_id)


@router.patch("/{integration_id}", response_model=IntegrationResponse)
async def update_integration(
    integration_id: str,
    body: UpdateIntegrationRequest,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationResponse:
    return await service.update_integration(caller, integration_id, body)


@router.post("/{integration_id}/connect", response_model=IntegrationResponse)
async def connect_integration(
    integration_id: str,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationResponse:
    return await service.connect(caller, integration_id)


@router.post("/{integration_id}/disconnect", response_model=IntegrationResponse)
async def disconnect_integration(
    integration_id: str,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationResponse:
    return await service.disconnect(caller, integration_id)


@router.post("/{integration_id}/sync", response_model=IntegrationResponse)
async def record_sync(
    integration_id: str,
    body: RecordSyncRequest,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationResponse:
    return await service.record_sync(caller, integration_id, body)


@router.post("/{integration_id}/test", response_model=IntegrationEventResponse)
async def test_connection(
    integration_id: str,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationEventResponse:
    return await service.test_connection(caller, integration_id)


@router.post("/{integration_id}/events", status_code=201, response_model=IntegrationEventResponse)
async def log_event(
    integration_id: str,
    body: LogIntegrationEventRequest,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationEventResponse:
    return await service.record_event(caller, integration_id, body)


@router.get("/{integration_id}/events", response_model=IntegrationEventsListResponse)
async def list_events(
    integration_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationEventsListResponse:
    return IntegrationEventsListResponse(
        events=await service.list_events(caller, integration_id, limit)
    )


@router.get("/{integration_id}/health", response_model=IntegrationHealth)
async def integration_health(
    integration_id: str,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
) -> IntegrationHealth:
    return await service.health(caller, integration_id)
