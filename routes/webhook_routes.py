"""
Webhook endpoints (caller JWT required).

POST   /api/v1/webhooks                                  — register (secret returned)
GET    /api/v1/webhooks                                  — list
POST   /api/v1/webhooks/events                           — fan an event out to subscribers
POST   /api/v1/webhooks/deliveries/{delivery_id}/redeliver
GET    /api/v1/webhooks/{webhook_id}                     — one webhook
PATCH  /api/v1/webhooks/{webhook_id}                     — update
DELETE /api/v1/webhooks/{webhook_id}                     — soft delete
POST   /api/v1/webhooks/{webhook_id}/test                — send a test.webhook event
GET    /api/v1/webhooks/{webhook_id}/deliveries          — recent deliveries
GET    /api/v1/webhooks/{webhook_id}/stats               — delivery figures
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from dependencies import get_caller, get_webhook_service
from schemas.dto.requests.webhook import (
    CreateWebhookRequest,
    DispatchEventRequest,
    UpdateWebhookRequest,
    WebhookTestRequest,
)
from schemas.dto.responses.common import MessageResponse
from schemas.dto.responses.webhook import (
    DeliveriesListResponse,
    DeliveryResponse,
    DispatchResult,
    WebhookCreatedResult,
    WebhookResponse,
    WebhooksListResponse,
    WebhookStats,
)
from schemas.models.webhook import DeliveryStatus
from services.access import Caller
from services.webhook_service import WebhookService

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("", status_code=201, response_model=WebhookCreatedResult)
async def create_webhook(
    body: CreateWebhookRequest,
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> WebhookCreatedResult:
    return await service.create(caller, body)


@router.get("", response_model=WebhooksListResponse)
async def list_webhooks(
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> WebhooksListResponse:
    return WebhooksListResponse(webhooks=await service.list_for_owner(caller))


@router.post("/events", status_code=202, response_model=DispatchResult)
async def dispatch_event(
    body: DispatchEventRequest,
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> DispatchResult:
    delivery_ids = await service.dispatch_event(caller.user_id, body.event, body.payload)
    return DispatchResult(event=body.event, delivery_ids=delivery_ids)


@router.post("/deliveries/{delivery_id}/redeliver", response_model=DeliveryResponse)
async def redeliver(
    delivery_id: str,
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> DeliveryResponse:
    return await service.redeliver(caller, delivery_id)


@router.get("/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(
    webhook_id: str,
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> WebhookResponse:
    return await service.get(caller, webhook_id)


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: str,
    body: UpdateWebhookRequest,
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> WebhookResponse:
    return await service.update(caller, webhook_id, body)


@router.delete("/{webhook_id}", response_model=MessageResponse)
async def delete_webhook(
    webhook_id: str,
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> MessageResponse:
    await service.delete(caller, webhook_id)
    return MessageResponse(success=True, message="webhook deleted")


@router.post("/{webhook_id}/test", response_model=DeliveryResponse)
async def test_webhook(
    webhook_id: str,
    body: Optional[WebhookTestRequest] = Body(default=None),
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> DeliveryResponse:
    return await service.test_webhook(caller, webhook_id, body.payload if body else None)


@router.get("/{webhook_id}/deliveries", response_model=DeliveriesListResponse)
async def list_deliveries(
    webhook_id: str,
    status: Optional[DeliveryStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> DeliveriesListResponse:
    deliveries = await service.list_deliveries(caller, webhook_id, status=status, limit=limit)
    return DeliveriesListResponse(deliveries=deliveries)


@router.get("/{webhook_id}/stats", response_model=WebhookStats)
async def webhook_stats(
    webhook_id: str,
    caller: Caller = Depends(get_caller),
    service: WebhookService = Depends(get_webhook_service),
) -> WebhookStats:
    return await service.stats(caller, webhook_id)
