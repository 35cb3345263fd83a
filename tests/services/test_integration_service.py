"""Tests for IntegrationService: connection lifecycle, event log and health."""

import pytest

from errors import ForbiddenError, ValidationError
from repositories.integration_repository import IntegrationRepository
from schemas.dto.requests.integration import (
    ConnectIntegrationRequest,
    LogIntegrationEventRequest,
    RecordSyncRequest,
    UpdateIntegrationRequest,
)
from services.integration_service import health_status


async def _create(service, caller, **overrides):
    body = {"name": "Zapier orders", "provider": "zapier", "config": {"zap_id": "42"}}
    body.update(overrides)
    return await service.create_integration(caller, ConnectIntegrationRequest(**body))


async def _log(service, caller, integration, status, processing_time_ms=None):
    return await service.record_event(
        caller,
        integration.id,
        LogIntegrationEventRequest(
            event_type="zap.triggered",
            direction="inbound",
            status=status,
            processing_time_ms=processing_time_ms,
        ),
    )


class TestHealthStatus:
    @pytest.mark.parametrize(
        "rate,total,expected",
        [
            (100.0, 10, "healthy"),
            (95.0, 20, "healthy"),
            (94.99, 20, "degraded"),
            (80.0, 5, "degraded"),
            (79.9, 5, "unhealthy"),
            (0.0, 0, "unknown"),
        ],
    )
    def test_thresholds(self, rate, total, expected):
        assert health_status(rate, total) == expected


# ── Connection lifecycle ──────────────────────────────────────────────────────


class TestLifecycle:
    async def test_automation_platform_connects_on_creation(self, integration_service, owner):
        integration = await _create(integration_service, owner)

        assert integration.id.startswith("int_")
        assert integration.status == "connected"
        assert integration.is_connected is True
        assert integration.last_connected_at is not None

    async def test_other_providers_start_pending(self, integration_service, owner):
        integration = await _create(
            integration_service, owner, name="Salesforce", provider="Salesforce", type="api"
        )
        assert integration.provider == "salesforce"
        assert integration.status == "pending"
        assert integration.is_connected is False

    async def test_disconnect_then_connect(self, integration_service, owner, clock):
        integration = await _create(integration_service, owner)

        clock.advance(minutes=1)
        disconnected = await integration_service.disconnect(owner, integration.id)
        assert disconnected.status == "disconnected"
        assert disconnected.is_connected is False
        assert disconnected.last_disconnected_at == int(clock.now().timestamp())

        clock.advance(minutes=1)
        reconnected = await integration_service.connect(owner, integration.id)
        assert reconnected.status == "connected"
        assert reconnected.last_connected_at == int(clock.now().timestamp())

    async def test_lifecycle_is_audited(self, integration_service, owner, audit):
        integration = await _create(integration_service, owner)
        await integration_service.disconnect(owner, integration.id)

        actions = [e.action for e in await audit.for_entity("integration", integration.id)]
        assert sorted(actions) == ["integration.connect", "integration.disconnect"]

    async def test_failed_sync_sets_error(self, integration_service, owner):
        integration = await _create(integration_service, owner)

        failed = await integration_service.record_sync(
            owner, integration.id, RecordSyncRequest(status="failed", error="401 from provider")
        )
        assert failed.status == "error"
        assert failed.connection_error == "401 from provider"
        assert failed.sync_status == "failed"

        recovered = await integration_service.record_sync(
            owner, integration.id, RecordSyncRequest(status="success")
        )
        assert recovered.status == "connected"
        assert recovered.connection_error is None

    async def test_sync_in_progress_leaves_status(self, integration_service, owner):
        integration = await _create(integration_service, owner)
        running = await integration_service.record_sync(
            owner, integration.id, RecordSyncRequest(status="in_progress")
        )
        assert running.status == "connected"
        assert running.last_synced_at is None

    async def test_update_config(self, integration_service, owner):
        integration = await _create(integration_service, owner)
        updated = await integration_service.update_integration(
            owner, integration.id, UpdateIntegrationRequest(config={"zap_id": "43"})
        )
        assert updated.config == {"zap_id": "43"}
        assert updated.name == integration.name

    async def test_other_user_cannot_manage(self, integration_service, owner, other_user):
        integration = await _create(integration_service, owner)
        with pytest.raises(ForbiddenError):
            await integration_service.disconnect(other_user, integration.id)

    async def test_list_filters_by_provider(self, integration_service, owner):
        await _create(integration_service, owner)
        await _create(integration_service, owner, name="Make scenario", provider="make")

        assert len(await integration_service.list_for_owner(owner)) == 2
        only_make = await integration_service.list_for_owner(owner, provider="MAKE")
        assert [i.provider for i in only_make] == ["make"]


# ── Event log ─────────────────────────────────────────────────────────────────


class TestEvents:
    async def test_test_connection_requires_connected(self, integration_service, owner):
        integration = await _create(integration_service, owner)
        await integration_service.disconnect(owner, integration.id)

        with pytest.raises(ValidationError):
            await integration_service.test_connection(owner, integration.id)

    async def test_test_connection_logs_pending_event(self, integration_service, owner):
        integration = await _create(integration_service, owner)
        event = await integration_service.test_connection(owner, integration.id)

        assert event.event_type == "test.connection"
        assert event.direction == "outbound"
        assert event.status == "pending"

    async def test_events_update_request_counters(self, integration_service, owner, db):
        integration = await _create(integration_service, owner)
        for status in ("success", "success", "failed", "pending"):
            await _log(integration_service, owner, integration, status)

        stored = await IntegrationRepository(db).find_by_public_id(integration.id)
        assert stored.total_requests == 4
        assert stored.successful_requests == 2
        assert stored.failed_requests == 1

    async def test_events_listed_newest_first(self, integration_service, owner, clock):
        integration = await _create(integration_service, owner)
        await _log(integration_service, owner, integration, "success")
        clock.advance(seconds=1)
        await _log(integration_service, owner, integration, "failed")

        events = await integration_service.list_events(owner, integration.id)
        assert [e.status for e in events] == ["failed", "success"]

    async def test_bodies_are_clipped(self, integration_service, owner, db):
        integration = await _create(integration_service, owner)
        await integration_service.record_event(
            owner,
            integration.id,
            LogIntegrationEventRequest(
                event_type="zap.triggered",
                direction="inbound",
                status="success",
                request="x" * 20000,
            ),
        )
        raw = await db["integration-events"].find_one({})
        assert len(raw["request"]) == 10000

    async def test_log_event_for_missing_integration(self, integration_service):
        result = await integration_service.log_event(
            "507f1f77bcf86cd799439011",
            event_type="x",
            direction="outbound",
            status="success",
        )
        assert result is None


class TestHealth:
    async def test_no_events_is_unknown(self, integration_service, owner):
        integration = await _create(integration_service, owner)
        health = await integration_service.health(owner, integration.id)
        assert health.health_status == "unknown"
        assert health.total_events == 0
        assert health.success_rate == 0.0

    async def test_degraded(self, integration_service, owner):
        integration = await _create(integration_service, owner)
        for _ in range(9):
            await _log(integration_service, owner, integration, "success", 10.0)
        await _log(integration_service, owner, integration, "failed", 30.0)

        health = await integration_service.health(owner, integration.id)

        assert health.health_status == "degraded"
        assert health.success_rate == 90.0
        assert health.failed_events == 1
        assert health.average_processing_time_ms == pytest.approx(12.0)

    async def test_pending_events_count_against_success_rate(self, integration_service, owner):
        integration = await _create(integration_service, owner)
        await _log(integration_service, owner, integration, "success")
        await _log(integration_service, owner, integration, "pending")

        health = await integration_service.health(owner, integration.id)
        assert health.pending_events == 1
        assert health.health_status == "unhealthy"
