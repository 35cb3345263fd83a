#!/usr/bin/env python3
"""
Webhook Retry Worker Runner

This script starts the standalone retry sweeper that re-attempts webhook
deliveries whose retry time has passed. Run it when the API process is
started with WEBHOOK_SWEEPER_ENABLED=false, or to add sweep capacity.
"""

import asyncio
import signal
import sys

from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from infrastructure.http_client import HttpClient
from infrastructure.webhook.http_transport import HttpWebhookTransport
from repositories.indexes import ensure_indexes
from services.container import build_services
from shared.logging import get_logger, setup_logging
from workers.retry_sweeper import RetrySweeper

log = get_logger(__name__)


async def run_worker(settings: AppSettings) -> None:
    mongo_client: AsyncMongoClient = AsyncMongoClient(settings.db.mongodb_uri, tz_aware=True)
    db = mongo_client[settings.db.db_name]
    await ensure_indexes(db)

    http_client = HttpClient(timeout=settings.webhooks.webhook_default_timeout_ms / 1000)
    services = build_services(db, settings, transport=HttpWebhookTransport(http_client))
    sweeper = RetrySweeper(
        services.webhooks,
        interval_seconds=settings.webhooks.webhook_sweep_interval_seconds,
        batch_size=settings.webhooks.webhook_sweep_batch_size,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(sweeper.stop()))
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    try:
        await sweeper.start()
    finally:
        await http_client.aclose()
        await mongo_client.close()


def main():
    """Main function to start the retry worker"""
    settings = AppSettings()
    setup_logging(settings.logging, env=settings.env)
    log.info("retry_worker_starting", env=settings.env)

    try:
        asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        log.info("retry_worker_stopped_by_user")
    except Exception:
        log.exception("retry_worker_failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
