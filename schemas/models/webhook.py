"""
Webhook document models.

WebhookDoc         — `webhooks`: endpoint registrations with delivery counters.
WebhookDeliveryDoc — `webhook-deliveries`: one row per delivery *sequence*
                     (webhook, event, payload). attempt_number starts at 1 and
                     is bumped on the same row for every retry.

Delivery status transitions:
    pending  → delivered | retrying | failed
    retrying → delivered | retrying | failed
delivered and failed are terminal.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.models.base import AuditedDoc, MongoBaseModel, PyObjectId, UTCDateTime

DELIVERY_PENDING = "pending"
DELIVERY_DELIVERED = "delivered"
DELIVERY_FAILED = "failed"
DELIVERY_RETRYING = "retrying"

DeliveryStatus = Literal["pending", "delivered", "failed", "retrying"]
TERMINAL_STATUSES = frozenset({DELIVERY_DELIVERED, DELIVERY_FAILED})

WebhookMethod = Literal["POST", "PUT"]

TEST_EVENT = "test.webhook"

# Preset for 5-attempt webhooks: 1s, 5s, 30s, 5m, 1h
DEFAULT_RETRY_SCHEDULE_MS = [1000, 5000, 30000, 300000, 3600000]


class RetryConfig(BaseModel):
    """Retry policy of a webhook.

    When schedule_ms is set, the delay after failed attempt n is
    schedule_ms[n-1] (the last entry repeats); otherwise it is
    initial_delay_ms * backoff_multiplier ** (n-1).
    """

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    schedule_ms: Optional[list[int]] = None

    @classmethod
    def fixed_schedule(cls) -> "RetryConfig":
        """Five attempts on the DEFAULT_RETRY_SCHEDULE_MS delays."""
        return cls(
            max_attempts=len(DEFAULT_RETRY_SCHEDULE_MS),
            schedule_ms=list(DEFAULT_RETRY_SCHEDULE_MS),
        )


class DeliveryError(BaseModel):
    message: str
    code: Optional[str] = None


class WebhookDoc(AuditedDoc):
    """Document model for the `webhooks` collection."""

    name: str
    description: Optional[str] = None
    url: str
    secret: str
    events: list[str]
    method: WebhookMethod = "POST"
    headers: Optional[dict[str, str]] = None
    timeout_ms: int = Field(default=10000, gt=0)
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    is_active: bool = True
    integration_id: Optional[PyObjectId] = None
    total_deliveries: int = Field(default=0, ge=0)
    successful_deliveries: int = Field(default=0, ge=0)
    failed_deliveries: int = Field(default=0, ge=0)
    # Sum over successful deliveries; the average is derived so both stay $inc-only
    total_response_time_ms: float = Field(default=0.0, ge=0)
    last_triggered_at: Optional[UTCDateTime] = None
    last_success_at: Optional[UTCDateTime] = None
    last_failure_at: Optional[UTCDateTime] = None

    @property
    def average_response_time_ms(self) -> Optional[float]:
        if not self.successful_deliveries:
            return None
        return self.total_response_time_ms / self.successful_deliveries


class WebhookDeliveryDoc(MongoBaseModel):
    """Document model for the `webhook-deliveries` collection."""

    webhook_id: PyObjectId
    owner_id: str
    event: str
    # Raw JSON body, frozen at enqueue time so every attempt is byte-identical
    payload: str
    url: str
    method: WebhookMethod = "POST"
    attempt_number: int = Field(default=1, ge=1)
    status: DeliveryStatus = DELIVERY_PENDING
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    response_time_ms: Optional[float] = None
    next_retry_at: Optional[UTCDateTime] = None
    # Lock token of the worker currently executing an attempt
    claim_token: Optional[str] = None
    error: Optional[DeliveryError] = None
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None
    delivered_at: Optional[UTCDateTime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
