"""Repository for the `api-keys` and `api-request-logs` collections."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId

from repositories.base import BaseRepository
from schemas.models.api_key import ApiKeyDoc, ApiRequestLogDoc


class ApiKeyRepository(BaseRepository[ApiKeyDoc]):
    collection_name = "api-keys"
    model = ApiKeyDoc

    async def find_by_prefix(self, key_prefix: str) -> Optional[ApiKeyDoc]:
        return await self.find_one({"key_prefix": key_prefix})

    async def list_for_owner(self, owner_id: str) -> list[ApiKeyDoc]:
        return await self.find_many({"owner_id": owner_id}, sort=[("created_at", -1)])

    async def count_active_for_owner(self, owner_id: str) -> int:
        return await self.count({"owner_id": owner_id, "is_active": True})

    async def record_use(self, key_id: ObjectId, now: datetime) -> Optional[ApiKeyDoc]:
        """Bump the usage counters, but only while the key is still active.

        None means the key was revoked (or deleted) after it was read.
        """
        return await self.find_one_and_update(
            {"_id": key_id, "is_active": True},
            {"$inc": {"total_requests": 1}, "$set": {"last_used_at": now}},
        )

    async def revoke(
        self,
        key_id: ObjectId,
        *,
        now: datetime,
        reason: Optional[str],
        revoked_by: str,
    ) -> Optional[ApiKeyDoc]:
        """Deactivate an active key. None when it was already inactive."""
        return await self.find_one_and_update(
            {"_id": key_id, "is_active": True},
            {
                "$set": {
                    "is_active": False,
                    "revoked_at": now,
                    "revoked_reason": reason,
                    "revoked_by": revoked_by,
                    "updated_at": now,
                    "updated_by": revoked_by,
                }
            },
            include_deleted=True,
        )

    async def record_error(self, key_id: ObjectId) -> None:
        await self.increment(key_id, {"total_errors": 1})


class ApiRequestLogRepository(BaseRepository[ApiRequestLogDoc]):
    collection_name = "api-request-logs"
    model = ApiRequestLogDoc
    soft_delete = False

    async def latest(self, key_id: ObjectId, limit: int = 100) -> list[ApiRequestLogDoc]:
        return await self.find_many(
            {"api_key_id": key_id}, sort=[("timestamp", -1)], limit=limit
        )
