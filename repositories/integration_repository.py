"""Repositories for `external-integrations` and the append-only `integration-events`."""

from __future__ import annotations

from typing import Optional

from bson import ObjectId

from repositories.base import BaseRepository
from schemas.models.integration import ExternalIntegrationDoc, IntegrationEventDoc


class IntegrationRepository(BaseRepository[ExternalIntegrationDoc]):
    collection_name = "external-integrations"
    model = ExternalIntegrationDoc

    async def list_for_owner(
        self, owner_id: str, *, provider: Optional[str] = None
    ) -> list[ExternalIntegrationDoc]:
        query = {"owner_id": owner_id}
        if provider:
            query["provider"] = provider
        return await self.find_many(query, sort=[("created_at", -1)])

    async def count_request(self, integration_id: ObjectId, status: str) -> None:
        counters = {"total_requests": 1}
        if status == "success":
            counters["successful_requests"] = 1
        elif status == "failed":
            counters["failed_requests"] = 1
        await self.increment(integration_id, counters)


class IntegrationEventRepository(BaseRepository[IntegrationEventDoc]):
    collection_name = "integration-events"
    model = IntegrationEventDoc
    soft_delete = False

    async def latest(
        self, integration_id: ObjectId, limit: int = 100
    ) -> list[IntegrationEventDoc]:
        return await self.find_many(
            {"integration_id": integration_id},
            sort=[("timestamp", -1)],
            limit=limit,
        )
