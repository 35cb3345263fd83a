"""
Index definitions, applied once at startup from the FastAPI lifespan.

create_index is idempotent, so running this on every boot is safe.
"""

from __future__ import annotations

from pymongo import ASCENDING, DESCENDING
from pymongo.asynchronous.database import AsyncDatabase

from shared.logging import get_logger

log = get_logger(__name__)


async def ensure_indexes(db: AsyncDatabase) -> None:
    # api-keys: prefix lookup must be O(1) and unambiguous
    await db["api-keys"].create_index("key_prefix", unique=True)
    await db["api-keys"].create_index("public_id", unique=True)
    await db["api-keys"].create_index([("owner_id", ASCENDING), ("is_active", ASCENDING)])

    await db["api-request-logs"].create_index(
        [("api_key_id", ASCENDING), ("timestamp", DESCENDING)]
    )

    await db["oauth-apps"].create_index("client_id", unique=True)
    await db["oauth-apps"].create_index("public_id", unique=True)
    await db["oauth-apps"].create_index("owner_id")

    # One row per hashed credential; codes and access tokens share the field
    await db["oauth-tokens"].create_index("access_token_hash", unique=True)
    await db["oauth-tokens"].create_index("refresh_token_hash", sparse=True)
    await db["oauth-tokens"].create_index([("app_id", ASCENDING), ("token_type", ASCENDING)])

    await db["webhooks"].create_index("public_id", unique=True)
    await db["webhooks"].create_index(
        [("owner_id", ASCENDING), ("is_active", ASCENDING), ("events", ASCENDING)]
    )

    # Retry sweep: "open deliveries due by now", oldest first
    await db["webhook-deliveries"].create_index(
        [("status", ASCENDING), ("next_retry_at", ASCENDING)]
    )
    await db["webhook-deliveries"].create_index(
        [("webhook_id", ASCENDING), ("created_at", DESCENDING)]
    )

    await db["external-integrations"].create_index("public_id", unique=True)
    await db["external-integrations"].create_index([("owner_id", ASCENDING), ("provider", ASCENDING)])
    await db["integration-events"].create_index(
        [("integration_id", ASCENDING), ("timestamp", DESCENDING)]
    )

    await db["audit-logs"].create_index(
        [("entity_type", ASCENDING), ("entity_id", ASCENDING), ("created_at", DESCENDING)]
    )

    log.info("mongo_indexes_ensured")
