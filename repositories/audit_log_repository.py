"""Repository for the `audit-logs` collection."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from repositories.base import BaseRepository
from schemas.models.audit_log import AuditLogDoc


class AuditLogRepository(BaseRepository[AuditLogDoc]):
    collection_name = "audit-logs"
    model = AuditLogDoc
    soft_delete = False

    async def record(
        self,
        *,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        description: str,
        now: datetime,
        entity_title: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditLogDoc:
        return await self.insert(
            AuditLogDoc(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_title=entity_title,
                description=description,
                metadata=metadata,
                created_at=now,
            )
        )

    async def for_entity(self, entity_type: str, entity_id: str) -> list[AuditLogDoc]:
        return await self.find_many(
            {"entity_type": entity_type, "entity_id": entity_id},
            sort=[("created_at", -1)],
        )
