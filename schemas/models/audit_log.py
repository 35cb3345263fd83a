"""
Audit log document model.

Maps to the `audit-logs` collection: one row per owner-initiated mutation
(key creation, webhook update, secret rotation…).
"""

from __future__ import annotations

from typing import Any, Optional

from schemas.models.base import MongoBaseModel, UTCDateTime


class AuditLogDoc(MongoBaseModel):
    """Document model for the `audit-logs` collection."""

    user_id: str
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    entity_title: Optional[str] = None
    description: str
    metadata: Optional[dict[str, Any]] = None
    created_at: UTCDateTime
