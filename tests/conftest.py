"""
Shared fixtures: an in-memory MongoDB, a controllable clock and a fake
webhook transport.

mongomock is synchronous; the wrappers below give it the awaitable surface
of pymongo's async API (awaited collection methods, ``find().to_list()``).
Each mongomock call runs to completion without yielding, so conditional
``find_one_and_update`` writes stay atomic under ``asyncio.gather``.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import mongomock
import pytest

from config import ApiKeySettings, OAuthSettings, WebhookSettings
from infrastructure.rate_limit_store import RedisRateLimitStore
from infrastructure.webhook.protocol import TransportResponse
from repositories.api_key_repository import ApiKeyRepository, ApiRequestLogRepository
from repositories.audit_log_repository import AuditLogRepository
from repositories.indexes import ensure_indexes
from repositories.integration_repository import (
    IntegrationEventRepository,
    IntegrationRepository,
)
from repositories.oauth_repository import OAuthAppRepository, OAuthTokenRepository
from repositories.webhook_repository import WebhookDeliveryRepository, WebhookRepository
from services.access import Caller
from services.api_key_service import ApiKeyService
from services.integration_service import IntegrationService
from services.oauth_service import OAuthService
from services.webhook_service import WebhookService

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class _AsyncCursor:
    def __init__(self, cursor) -> None:
        self._cursor = cursor

    async def to_list(self, length=None):
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class AsyncMockCollection:
    def __init__(self, collection) -> None:
        self._collection = collection

    def find(self, *args, **kwargs) -> _AsyncCursor:
        return _AsyncCursor(self._collection.find(*args, **kwargs))

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        async def call(*args, **kwargs):
            return attr(*args, **kwargs)

        return call


class AsyncMockDatabase:
    def __init__(self, database) -> None:
        self._database = database
        self._collections: dict[str, AsyncMockCollection] = {}

    def __getitem__(self, name: str) -> AsyncMockCollection:
        if name not in self._collections:
            self._collections[name] = AsyncMockCollection(self._database[name])
        return self._collections[name]


class ManualClock:
    """Clock that only moves when a test says so. Whole-millisecond steps only."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current += timedelta(**delta)
        return self.current


# ── Store ────────────────────────────────────────────────────────────────────


@pytest.fixture
def mongo_database():
    """Empty database without indexes; app-level tests create them in their lifespan."""
    return AsyncMockDatabase(mongomock.MongoClient(tz_aware=True)["integrations-test"])


@pytest.fixture
async def db(mongo_database):
    await ensure_indexes(mongo_database)
    return mongo_database


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def owner():
    return Caller(user_id="user-1")


@pytest.fixture
def other_user():
    return Caller(user_id="user-2")


@pytest.fixture
def admin():
    return Caller(user_id="admin-1", role="admin")


# ── Collaborators ────────────────────────────────────────────────────────────


@pytest.fixture
def transport():
    """Webhook transport that answers 200 unless a test reconfigures it."""
    fake = AsyncMock()
    fake.send.return_value = TransportResponse(status_code=200, body="ok")
    return fake


@pytest.fixture
def rate_limits():
    return RedisRateLimitStore(None)


@pytest.fixture
def webhook_settings():
    return WebhookSettings(
        webhook_default_timeout_ms=10000,
        webhook_default_max_attempts=3,
        webhook_default_backoff_multiplier=2.0,
        webhook_default_initial_delay_ms=1000,
        webhook_sweep_max_concurrency=5,
        webhook_claim_lease_seconds=60,
    )


# ── Services ─────────────────────────────────────────────────────────────────


@pytest.fixture
def audit(db):
    return AuditLogRepository(db)


@pytest.fixture
def api_key_service(db, audit, rate_limits, clock):
    return ApiKeyService(
        ApiKeyRepository(db),
        ApiRequestLogRepository(db),
        audit,
        rate_limits,
        ApiKeySettings(api_key_max_active_per_user=5),
        clock=clock,
    )


@pytest.fixture
def oauth_settings():
    return OAuthSettings()


@pytest.fixture
def oauth_service(db, audit, clock, oauth_settings):
    return OAuthService(
        OAuthAppRepository(db),
        OAuthTokenRepository(db),
        audit,
        oauth_settings,
        clock=clock,
    )


@pytest.fixture
def integration_service(db, audit, clock):
    return IntegrationService(
        IntegrationRepository(db),
        IntegrationEventRepository(db),
        audit,
        clock=clock,
    )


@pytest.fixture
def webhook_service(db, audit, transport, webhook_settings, integration_service, clock):
    return WebhookService(
        WebhookRepository(db),
        WebhookDeliveryRepository(db),
        audit,
        transport,
        webhook_settings,
        integrations=integration_service,
        clock=clock,
    )
