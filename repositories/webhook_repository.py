"""Repositories for the `webhooks` and `webhook-deliveries` collections."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from bson import ObjectId

from repositories.base import BaseRepository
from schemas.models.webhook import (
    DELIVERY_PENDING,
    DELIVERY_RETRYING,
    WebhookDeliveryDoc,
    WebhookDoc,
)

OPEN_STATUSES = [DELIVERY_PENDING, DELIVERY_RETRYING]


class WebhookRepository(BaseRepository[WebhookDoc]):
    collection_name = "webhooks"
    model = WebhookDoc

    async def list_for_owner(self, owner_id: str) -> list[WebhookDoc]:
        return await self.find_many({"owner_id": owner_id}, sort=[("created_at", -1)])

    async def list_subscribed(self, owner_id: str, event: str) -> list[WebhookDoc]:
        return await self.find_many(
            {"owner_id": owner_id, "is_active": True, "events": event}
        )

    async def record_triggered(self, webhook_id: ObjectId, now: datetime) -> None:
        await self.collection.update_one(
            {"_id": webhook_id},
            {"$inc": {"total_deliveries": 1}, "$set": {"last_triggered_at": now}},
        )

    async def record_success(
        self, webhook_id: ObjectId, now: datetime, response_time_ms: float
    ) -> None:
        await self.collection.update_one(
            {"_id": webhook_id},
            {
                "$inc": {
                    "successful_deliveries": 1,
                    "total_response_time_ms": response_time_ms,
                },
                "$set": {"last_success_at": now},
            },
        )

    async def record_failure(
        self, webhook_id: ObjectId, now: datetime, *, terminal: bool
    ) -> None:
        update: dict[str, Any] = {"$set": {"last_failure_at": now}}
        if terminal:
            update["$inc"] = {"failed_deliveries": 1}
        await self.collection.update_one({"_id": webhook_id}, update)


class WebhookDeliveryRepository(BaseRepository[WebhookDeliveryDoc]):
    collection_name = "webhook-deliveries"
    model = WebhookDeliveryDoc
    soft_delete = False

    async def claim_due(
        self, *, now: datetime, lease_until: datetime, claim_token: str
    ) -> Optional[WebhookDeliveryDoc]:
        """Take the oldest open delivery whose retry time has passed.

        Pushing next_retry_at forward to *lease_until* hides the row from
        other sweepers; if this worker dies, the row resurfaces once the
        lease runs out.
        """
        return await self.find_one_and_update(
            {"status": {"$in": OPEN_STATUSES}, "next_retry_at": {"$lte": now}},
            {"$set": {"next_retry_at": lease_until, "claim_token": claim_token}},
            sort=[("next_retry_at", 1)],
        )

    async def extend_claim(
        self, delivery_id: ObjectId, claim_token: str, lease_until: datetime
    ) -> Optional[WebhookDeliveryDoc]:
        """Move the lease deadline of a row this worker still holds; None once it is lost."""
        return await self.find_one_and_update(
            {
                "_id": delivery_id,
                "claim_token": claim_token,
                "status": {"$in": OPEN_STATUSES},
            },
            {"$set": {"next_retry_at": lease_until}},
        )

    async def finalize_attempt(
        self,
        delivery_id: ObjectId,
        claim_token: str,
        fields: dict[str, Any],
        *,
        bump_attempt: bool = False,
    ) -> Optional[WebhookDeliveryDoc]:
        """Record an attempt's outcome if this worker still holds the claim."""
        update: dict[str, Any] = {"$set": {**fields, "claim_token": None}}
        if bump_attempt:
            update["$inc"] = {"attempt_number": 1}
        return await self.find_one_and_update(
            {
                "_id": delivery_id,
                "claim_token": claim_token,
                "status": {"$in": OPEN_STATUSES},
            },
            update,
        )

    async def list_for_webhook(
        self, webhook_id: ObjectId, *, status: Optional[str] = None, limit: int = 50
    ) -> list[WebhookDeliveryDoc]:
        query: dict[str, Any] = {"webhook_id": webhook_id}
        if status:
            query["status"] = status
        return await self.find_many(query, sort=[("created_at", -1)], limit=limit)

    async def count_by_status(self, webhook_id: ObjectId) -> dict[str, int]:
        deliveries = await self.find_many({"webhook_id": webhook_id})
        counts: dict[str, int] = {}
        for delivery in deliveries:
            counts[delivery.status] = counts.get(delivery.status, 0) + 1
        return counts
