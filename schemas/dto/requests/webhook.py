"""
Request DTOs for webhook endpoints.

CreateWebhookRequest — POST /api/v1/webhooks
UpdateWebhookRequest — PATCH /api/v1/webhooks/{webhook_id}
WebhookTestRequest   — POST /api/v1/webhooks/{webhook_id}/test
DispatchEventRequest — POST /api/v1/webhooks/events
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from schemas.dto.requests.common import (
    check_description,
    check_name,
    check_string_set,
    check_url,
)
from schemas.models.webhook import RetryConfig, WebhookMethod

URL_MAX = 2000
EVENTS_MAX = 50
HEADERS_MAX = 50


def _check_headers(value: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
    if value is None:
        return None
    if len(value) > HEADERS_MAX:
        raise ValueError(f"headers must contain at most {HEADERS_MAX} entries")
    cleaned: dict[str, str] = {}
    for name, header_value in value.items():
        name = name.strip()
        if not name or any(c in name for c in " :\r\n"):
            raise ValueError(f"invalid header name: {name!r}")
        if "\r" in header_value or "\n" in header_value:
            raise ValueError(f"invalid value for header {name}")
        cleaned[name] = header_value
    return cleaned or None


class CreateWebhookRequest(BaseModel):
    """Request body for POST /api/v1/webhooks.

    ``secret`` is generated when omitted. ``timeout_ms`` and ``retry_config``
    fall back to the configured defaults.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    url: str
    events: list[str]
    secret: Optional[str] = Field(default=None, min_length=16, max_length=256)
    method: WebhookMethod = "POST"
    headers: Optional[dict[str, str]] = None
    timeout_ms: Optional[int] = Field(default=None, gt=0, le=60000)
    retry_config: Optional[RetryConfig] = None
    integration_id: Optional[str] = None

    @field_validator("name", mode="after")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        return check_name(v)

    @field_validator("description", mode="after")
    @classmethod
    def _validate_description(cls, v: Optional[str]) -> Optional[str]:
        return check_description(v)

    @field_validator("url", mode="after")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        return check_url(v, "url", max_length=URL_MAX)

    @field_validator("events", mode="after")
    @classmethod
    def _validate_events(cls, v: list[str]) -> list[str]:
        return check_string_set(v, "events", max_items=EVENTS_MAX)

    @field_validator("headers", mode="after")
    @classmethod
    def _validate_headers(cls, v: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
        return _check_headers(v)


class UpdateWebhookRequest(BaseModel):
    """Request body for PATCH /api/v1/webhooks/{webhook_id}.

    Changing ``url`` or ``method`` affects new deliveries only; queued retries
    keep the target they were created with.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    events: Optional[list[str]] = None
    method: Optional[WebhookMethod] = None
    headers: Optional[dict[str, str]] = None
    timeout_ms: Optional[int] = Field(default=None, gt=0, le=60000)
    retry_config: Optional[RetryConfig] = None
    is_active: Optional[bool] = None

    @field_validator("name", mode="after")
    @classmethod
    def _validate_name(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else check_name(v)

    @field_validator("description", mode="after")
    @classmethod
    def _validate_description(cls, v: Optional[str]) -> Optional[str]:
        return check_description(v)

    @field_validator("url", mode="after")
    @classmethod
    def _validate_url(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else check_url(v, "url", max_length=URL_MAX)

    @field_validator("events", mode="after")
    @classmethod
    def _validate_events(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else check_string_set(v, "events", max_items=EVENTS_MAX)

    @field_validator("headers", mode="after")
    @classmethod
    def _validate_headers(cls, v: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
        return _check_headers(v)

    @model_validator(mode="after")
    def _require_a_change(self) -> "UpdateWebhookRequest":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class WebhookTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payload: Optional[dict[str, Any]] = None


class DispatchEventRequest(BaseModel):
    """Request body for POST /api/v1/webhooks/events."""

    model_config = ConfigDict(populate_by_name=True)

    event: str = Field(min_length=1, max_length=200)
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event", mode="after")
    @classmethod
    def _strip_event(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("event is required")
        return v
