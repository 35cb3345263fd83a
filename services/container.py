"""Wires repositories and services over one database; shared by the app and the worker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pymongo.asynchronous.database import AsyncDatabase

from config import AppSettings
from infrastructure.rate_limit_store import RedisRateLimitStore
from infrastructure.webhook.protocol import WebhookTransport
from repositories.api_key_repository import ApiKeyRepository, ApiRequestLogRepository
from repositories.audit_log_repository import AuditLogRepository
from repositories.integration_repository import (
    IntegrationEventRepository,
    IntegrationRepository,
)
from repositories.oauth_repository import OAuthAppRepository, OAuthTokenRepository
from repositories.webhook_repository import WebhookDeliveryRepository, WebhookRepository
from services.access import AccessPolicy
from services.api_key_service import ApiKeyService
from services.integration_service import IntegrationService
from services.oauth_service import OAuthService
from services.webhook_service import WebhookService
from shared.clock import Clock, SystemClock


@dataclass
class ServiceContainer:
    api_keys: ApiKeyService
    oauth: OAuthService
    webhooks: WebhookService
    integrations: IntegrationService


def build_services(
    db: AsyncDatabase,
    settings: AppSettings,
    *,
    transport: WebhookTransport,
    redis_client=None,
    clock: Optional[Clock] = None,
) -> ServiceContainer:
    clock = clock or SystemClock()
    policy = AccessPolicy()
    audit = AuditLogRepository(db)

    integrations = IntegrationService(
        IntegrationRepository(db),
        IntegrationEventRepository(db),
        audit,
        clock=clock,
        policy=policy,
    )
    return ServiceContainer(
        api_keys=ApiKeyService(
            ApiKeyRepository(db),
            ApiRequestLogRepository(db),
            audit,
            RedisRateLimitStore(redis_client),
            settings.api_keys,
            clock=clock,
            policy=policy,
        ),
        oauth=OAuthService(
            OAuthAppRepository(db),
            OAuthTokenRepository(db),
            audit,
            settings.oauth,
            clock=clock,
            policy=policy,
        ),
        webhooks=WebhookService(
            WebhookRepository(db),
            WebhookDeliveryRepository(db),
            audit,
            transport,
            settings.webhooks,
            integrations=integrations,
            clock=clock,
            policy=policy,
        ),
        integrations=integrations,
    )
