"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import register_error_handlers
from infrastructure.http_client import HttpClient
from infrastructure.webhook.http_transport import HttpWebhookTransport
from repositories.indexes import ensure_indexes
from routes.api_key_routes import router as api_key_router
from routes.health_routes import router as health_router
from routes.integration_routes import router as integration_router
from routes.oauth_routes import router as oauth_router
from routes.oauth_routes import token_router as oauth_token_router
from routes.webhook_routes import router as webhook_router
from services.container import build_services
from shared.log_context import setup_logging_middleware
from shared.logging import get_logger, setup_logging
from workers.retry_sweeper import RetrySweeper

log = get_logger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    setup_logging(settings.logging, env=settings.env)

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
            profiles_sample_rate=settings.sentry.sentry_profile_sample_rate,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: AsyncMongoClient = AsyncMongoClient(
            settings.db.mongodb_uri, tz_aware=True
        )
        app.state.mongo_client = mongo_client
        app.state.db = mongo_client[settings.db.db_name]
        app.state.settings = settings

        # Redis is optional; without it API key rate limits are not enforced
        redis_client = None
        if settings.redis.redis_uri:
            redis_client = aioredis.from_url(
                settings.redis.redis_uri,
                encoding="utf-8",
                decode_responses=True,
            )
        app.state.redis = redis_client

        await ensure_indexes(app.state.db)

        http_client = HttpClient(
            timeout=settings.webhooks.webhook_default_timeout_ms / 1000
        )
        services = build_services(
            app.state.db,
            settings,
            transport=HttpWebhookTransport(http_client),
            redis_client=redis_client,
        )
        app.state.services = services

        sweeper: Optional[RetrySweeper] = None
        if settings.webhooks.webhook_sweeper_enabled:
            sweeper = RetrySweeper(
                services.webhooks,
                interval_seconds=settings.webhooks.webhook_sweep_interval_seconds,
                batch_size=settings.webhooks.webhook_sweep_batch_size,
            )
            sweeper.start()
        app.state.sweeper = sweeper
        log.info("app_started", env=settings.env, sweeper=sweeper is not None)

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        if sweeper is not None:
            await sweeper.stop()
        await http_client.aclose()
        await mongo_client.close()
        if redis_client is not None:
            await redis_client.aclose()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    # all origins allowed with credentials support.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_logging_middleware(app)

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(api_key_router)
    app.include_router(oauth_router)
    app.include_router(oauth_token_router)
    app.include_router(webhook_router)
    app.include_router(integration_router)

    return app
