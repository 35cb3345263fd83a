"""
Integration event log — connection records and their append-only activity.

Events are written once and never updated. Health is a read-time summary of
the latest events; nothing about it is stored on the integration.
"""

from __future__ import annotations

from typing import Optional

from errors import NotFoundError, ValidationError
from repositories.audit_log_repository import AuditLogRepository
from repositories.base import to_object_id
from repositories.integration_repository import (
    IntegrationEventRepository,
    IntegrationRepository,
)
from schemas.dto.requests.integration import (
    ConnectIntegrationRequest,
    LogIntegrationEventRequest,
    RecordSyncRequest,
    UpdateIntegrationRequest,
)
from schemas.dto.responses.integration import (
    HealthStatus,
    IntegrationEventResponse,
    IntegrationHealth,
    IntegrationResponse,
)
from schemas.models.integration import (
    AUTOMATION_PLATFORMS,
    TEST_CONNECTION_EVENT,
    ExternalIntegrationDoc,
    IntegrationEventDoc,
)
from services.access import AccessPolicy, Caller
from shared.clock import Clock, SystemClock
from shared.datetime_utils import to_timestamp
from shared.generators import generate_public_id
from shared.logging import get_logger

log = get_logger(__name__)

HEALTH_WINDOW = 100
HEALTHY_THRESHOLD = 95.0
DEGRADED_THRESHOLD = 80.0

# Request/response bodies are kept for debugging, not archival
EVENT_BODY_MAX_CHARS = 10000


def health_status(success_rate: float, total_events: int) -> HealthStatus:
    if total_events == 0:
        return "unknown"
    if success_rate >= HEALTHY_THRESHOLD:
        return "healthy"
    if success_rate >= DEGRADED_THRESHOLD:
        return "degraded"
    return "unhealthy"


def _clip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value[:EVENT_BODY_MAX_CHARS]


class IntegrationService:
    def __init__(
        self,
        integrations: IntegrationRepository,
        events: IntegrationEventRepository,
        audit: AuditLogRepository,
        *,
        clock: Optional[Clock] = None,
        policy: Optional[AccessPolicy] = None,
    ) -> None:
        self._integrations = integrations
        self._events = events
        self._audit = audit
        self._clock = clock or SystemClock()
        self._policy = policy or AccessPolicy()

    async def resolve_owned(self, caller: Caller, integration_ref: str) -> ExternalIntegrationDoc:
        """Load an integration by system or public id and check the caller may manage it."""
        integration: Optional[ExternalIntegrationDoc]
        if to_object_id(integration_ref) is not None:
            integration = await self._integrations.get(integration_ref)
        else:
            integration = await self._integrations.find_by_public_id(integration_ref)
        if integration is None:
            raise NotFoundError("integration not found")
        self._policy.ensure_can_manage(caller, integration.owner_id, "integration")
        return integration

    async def _audit_action(
        self, caller: Caller, action: str, integration: ExternalIntegrationDoc, description: str
    ) -> None:
        await self._audit.record(
            user_id=caller.user_id,
            action=action,
            entity_type="integration",
            entity_id=integration.public_id,
            entity_title=integration.name,
            description=description,
            metadata={"provider": integration.provider},
            now=self._clock.now(),
        )

    # ── Connection lifecycle ─────────────────────────────────────────────────

    async def create_integration(
        self, caller: Caller, request: ConnectIntegrationRequest
    ) -> IntegrationResponse:
        """Record a new integration.

        Automation platforms connect on creation; every other provider starts
        out ``pending`` until a successful sync or an explicit connect.
        """
        now = self._clock.now()
        connects = request.type == "automation" and request.provider in AUTOMATION_PLATFORMS
        doc = ExternalIntegrationDoc(
            public_id=generate_public_id("int_"),
            owner_id=caller.user_id,
            name=request.name,
            provider=request.provider,
            type=request.type,
            config=request.config,
            metadata=request.metadata,
            status="connected" if connects else "pending",
            is_connected=connects,
            last_connected_at=now if connects else None,
            created_at=now,
            created_by=caller.user_id,
            updated_at=now,
            updated_by=caller.user_id,
        )
        await self._integrations.insert(doc)

        await self._audit_action(
            caller,
            "integration.connect",
            doc,
            f'Connected {doc.provider} integration "{doc.name}"',
        )
        log.info(
            "integration_created",
            integration_id=str(doc.id),
            provider=doc.provider,
            status=doc.status,
        )
        return IntegrationResponse.from_doc(doc)

    async def connect(self, caller: Caller, integration_ref: str) -> IntegrationResponse:
        """Mark an existing integration connected again."""
        integration = await self.resolve_owned(caller, integration_ref)
        now = self._clock.now()
        updated = await self._integrations.update_fields(
            integration.id,
            {
                "status": "connected",
                "is_connected": True,
                "connection_error": None,
                "last_connected_at": now,
                "updated_at": now,
                "updated_by": caller.user_id,
            },
        )
        if updated is None:
            raise NotFoundError("integration not found")
        await self._audit_action(
            caller, "integration.connect", updated, f'Reconnected integration "{updated.name}"'
        )
        log.info("integration_connected", integration_id=str(integration.id))
        return IntegrationResponse.from_doc(updated)

    async def update_integration(
        self, caller: Caller, integration_ref: str, request: UpdateIntegrationRequest
    ) -> IntegrationResponse:
        integration = await self.resolve_owned(caller, integration_ref)
        changes = request.changes()
        if changes.get("name", "") is None:
            del changes["name"]
        if changes.get("config", {}) is None:
            changes["config"] = {}
        if not changes:
            return IntegrationResponse.from_doc(integration)

        now = self._clock.now()
        fields = sorted(changes)
        changes.update(updated_at=now, updated_by=caller.user_id)
        updated = await self._integrations.update_fields(integration.id, changes)
        if updated is None:
            raise NotFoundError("integration not found")

        await self._audit_action(
            caller, "integration.update", updated, f'Updated integration "{updated.name}"'
        )
        log.info("integration_updated", integration_id=str(integration.id), fields=fields)
        return IntegrationResponse.from_doc(updated)

    async def disconnect(self, caller: Caller, integration_ref: str) -> IntegrationResponse:
        integration = await self.resolve_owned(caller, integration_ref)
        now = self._clock.now()
        updated = await self._integrations.update_fields(
            integration.id,
            {
                "status": "disconnected",
                "is_connected": False,
                "last_disconnected_at": now,
                "updated_at": now,
                "updated_by": caller.user_id,
            },
        )
        if updated is None:
            raise NotFoundError("integration not found")

        await self._audit_action(
            caller,
            "integration.disconnect",
            updated,
            f'Disconnected {updated.provider} integration "{updated.name}"',
        )
        log.info("integration_disconnected", integration_id=str(integration.id))
        return IntegrationResponse.from_doc(updated)

    async def record_sync(
        self, caller: Caller, integration_ref: str, request: RecordSyncRequest
    ) -> IntegrationResponse:
        """Store the outcome of a sync run. A failed sync puts the integration in ``error``."""
        integration = await self.resolve_owned(caller, integration_ref)
        now = self._clock.now()
        fields: dict = {"sync_status": request.status, "updated_at": now}
        if request.status == "success":
            fields.update(
                last_synced_at=now,
                status="connected",
                is_connected=True,
                connection_error=None,
            )
        elif request.status == "failed":
            fields.update(
                last_synced_at=now,
                status="error",
                connection_error=request.error or "sync failed",
            )

        updated = await self._integrations.update_fields(integration.id, fields)
        if updated is None:
            raise NotFoundError("integration not found")
        log.info(
            "integration_sync_recorded",
            integration_id=str(integration.id),
            sync_status=request.status,
        )
        return IntegrationResponse.from_doc(updated)

    async def test_connection(
        self, caller: Caller, integration_ref: str
    ) -> IntegrationEventResponse:
        integration = await self.resolve_owned(caller, integration_ref)
        if not integration.is_connected:
            raise ValidationError("integration is not connected")
        event = await self._append(
            integration,
            event_type=TEST_CONNECTION_EVENT,
            direction="outbound",
            status="pending",
            created_by=caller.user_id,
        )
        return IntegrationEventResponse.from_doc(event)

    # ── Event log ────────────────────────────────────────────────────────────

    async def _append(
        self,
        integration: ExternalIntegrationDoc,
        *,
        event_type: str,
        direction: str,
        status: str,
        request: Optional[str] = None,
        response: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[float] = None,
        created_by: Optional[str] = None,
    ) -> IntegrationEventDoc:
        event = IntegrationEventDoc(
            integration_id=integration.id,
            event_type=event_type,
            direction=direction,
            status=status,
            request=_clip(request),
            response=_clip(response),
            error=error,
            processing_time_ms=processing_time_ms,
            timestamp=self._clock.now(),
            created_by=created_by,
        )
        await self._events.insert(event)
        await self._integrations.count_request(integration.id, status)
        log.debug(
            "integration_event_logged",
            integration_id=str(integration.id),
            event_type=event_type,
            status=status,
        )
        return event

    async def log_event(
        self,
        integration_id,
        *,
        event_type: str,
        direction: str,
        status: str,
        request: Optional[str] = None,
        response: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[float] = None,
    ) -> Optional[IntegrationEventDoc]:
        """Append an event for *integration_id*; None when the integration is gone."""
        integration = await self._integrations.get(integration_id)
        if integration is None:
            log.warning("integration_event_dropped", integration_id=str(integration_id))
            return None
        return await self._append(
            integration,
            event_type=event_type,
            direction=direction,
            status=status,
            request=request,
            response=response,
            error=error,
            processing_time_ms=processing_time_ms,
        )

    async def record_event(
        self, caller: Caller, integration_ref: str, request: LogIntegrationEventRequest
    ) -> IntegrationEventResponse:
        integration = await self.resolve_owned(caller, integration_ref)
        event = await self._append(
            integration,
            event_type=request.event_type,
            direction=request.direction,
            status=request.status,
            request=request.request,
            response=request.response,
            error=request.error,
            processing_time_ms=request.processing_time_ms,
            created_by=caller.user_id,
        )
        return IntegrationEventResponse.from_doc(event)

    # ── Queries ──────────────────────────────────────────────────────────────

    async def get(self, caller: Caller, integration_ref: str) -> IntegrationResponse:
        return IntegrationResponse.from_doc(await self.resolve_owned(caller, integration_ref))

    async def list_for_owner(
        self, caller: Caller, provider: Optional[str] = None
    ) -> list[IntegrationResponse]:
        integrations = await self._integrations.list_for_owner(
            caller.user_id, provider=provider.strip().lower() if provider else None
        )
        return [IntegrationResponse.from_doc(i) for i in integrations]

    async def list_events(
        self, caller: Caller, integration_ref: str, limit: int = 50
    ) -> list[IntegrationEventResponse]:
        integration = await self.resolve_owned(caller, integration_ref)
        events = await self._events.latest(integration.id, min(max(limit, 1), HEALTH_WINDOW))
        return [IntegrationEventResponse.from_doc(e) for e in events]

    async def health(self, caller: Caller, integration_ref: str) -> IntegrationHealth:
        integration = await self.resolve_owned(caller, integration_ref)
        events = await self._events.latest(integration.id, HEALTH_WINDOW)

        successful = sum(1 for e in events if e.status == "success")
        failed = sum(1 for e in events if e.status == "failed")
        pending = len(events) - successful - failed
        success_rate = round(successful / len(events) * 100, 2) if events else 0.0

        timings = [e.processing_time_ms for e in events if e.processing_time_ms is not None]
        return IntegrationHealth(
            integration_id=str(integration.id),
            health_status=health_status(success_rate, len(events)),
            total_events=len(events),
            successful_events=successful,
            failed_events=failed,
            pending_events=pending,
            success_rate=success_rate,
            average_processing_time_ms=sum(timings) / len(timings) if timings else None,
            last_event_at=to_timestamp(events[0].timestamp) if events else None,
        )
