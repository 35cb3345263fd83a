"""
Response DTOs for webhook endpoints.

WebhookResponse       — one webhook as shown to its owner (secret omitted)
WebhookCreatedResult  — POST /api/v1/webhooks (201) — includes ``secret``
DeliveryResponse      — one delivery row
WebhookStats          — GET /api/v1/webhooks/{webhook_id}/stats
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.webhook import DeliveryError, RetryConfig, WebhookDeliveryDoc, WebhookDoc
from shared.datetime_utils import to_timestamp


class WebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    webhook_id: str
    name: str
    description: Optional[str] = None
    url: str
    events: list[str]
    method: str
    headers: Optional[dict[str, str]] = None
    timeout_ms: int
    retry_config: RetryConfig
    is_active: bool
    integration_id: Optional[str] = None
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    average_response_time_ms: Optional[float] = None
    created_at: Optional[int] = None
    last_triggered_at: Optional[int] = None
    last_success_at: Optional[int] = None
    last_failure_at: Optional[int] = None

    @classmethod
    def from_doc(cls, doc: WebhookDoc) -> "WebhookResponse":
        return cls(
            id=doc.public_id or str(doc.id),
            webhook_id=str(doc.id),
            name=doc.name,
            description=doc.description,
            url=doc.url,
            events=doc.events,
            method=doc.method,
            headers=doc.headers,
            timeout_ms=doc.timeout_ms,
            retry_config=doc.retry_config,
            is_active=doc.is_active,
            integration_id=str(doc.integration_id) if doc.integration_id else None,
            total_deliveries=doc.total_deliveries,
            successful_deliveries=doc.successful_deliveries,
            failed_deliveries=doc.failed_deliveries,
            average_response_time_ms=doc.average_response_time_ms,
            created_at=to_timestamp(doc.created_at),
            last_triggered_at=to_timestamp(doc.last_triggered_at),
            last_success_at=to_timestamp(doc.last_success_at),
            last_failure_at=to_timestamp(doc.last_failure_at),
        )


class WebhookCreatedResult(WebhookResponse):
    """The signing ``secret`` is returned at creation so receivers can verify payloads."""

    secret: str


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    webhook_id: str
    event: str
    status: str
    attempt_number: int
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None
    response_body: Optional[str] = None
    error: Optional[DeliveryError] = None
    created_at: Optional[int] = None
    next_retry_at: Optional[int] = None
    delivered_at: Optional[int] = None

    @classmethod
    def from_doc(cls, doc: WebhookDeliveryDoc) -> "DeliveryResponse":
        return cls(
            id=str(doc.id),
            webhook_id=str(doc.webhook_id),
            event=doc.event,
            status=doc.status,
            attempt_number=doc.attempt_number,
            status_code=doc.status_code,
            response_time_ms=doc.response_time_ms,
            response_body=doc.response_body,
            error=doc.error,
            created_at=to_timestamp(doc.created_at),
            # A lease on an in-flight row is not a retry time
            next_retry_at=to_timestamp(doc.next_retry_at) if doc.status == "retrying" else None,
            delivered_at=to_timestamp(doc.delivered_at),
        )


class DeliveriesListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deliveries: list[DeliveryResponse]


class WebhookStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    webhook_id: str
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    pending_deliveries: int
    retrying_deliveries: int
    success_rate: float
    average_response_time_ms: Optional[float] = None
    last_success_at: Optional[int] = None
    last_failure_at: Optional[int] = None


class WebhooksListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    webhooks: list[WebhookResponse]


class DispatchResult(BaseModel):
    """POST /api/v1/webhooks/events — one delivery id per subscribed webhook."""

    model_config = ConfigDict(populate_by_name=True)

    event: str
    delivery_ids: list[str]
