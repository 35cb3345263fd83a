"""
Generic async repository over one MongoDB collection.

Subclasses set `collection_name` and `model` and add the collection-specific
queries. Every lookup hides soft-deleted documents unless asked otherwise.

All compare-and-set style writes go through `find_one_and_update` with the
precondition folded into the filter: the document is only changed when the
filter still matches at write time, and None tells the caller it did not.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar, Union

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase

from schemas.models.base import MongoBaseModel

DocT = TypeVar("DocT", bound=MongoBaseModel)

LIVE: dict[str, Any] = {"deleted_at": None}


def to_object_id(value: Union[str, ObjectId, None]) -> Optional[ObjectId]:
    """Coerce *value* to ObjectId; None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


class BaseRepository(Generic[DocT]):
    collection_name: str
    model: type[DocT]
    # False for append-only collections that carry no soft-delete stamp
    soft_delete: bool = True

    def __init__(self, db: AsyncDatabase) -> None:
        self._col = db[self.collection_name]

    @property
    def collection(self):
        return self._col

    def _live(self, query: dict[str, Any], include_deleted: bool = False) -> dict[str, Any]:
        if include_deleted or not self.soft_delete:
            return query
        return {**query, **LIVE}

    def _load(self, raw: Optional[dict]) -> Optional[DocT]:
        return self.model.from_mongo(raw)

    async def insert(self, doc: DocT) -> DocT:
        result = await self._col.insert_one(doc.to_mongo())
        doc.id = result.inserted_id
        return doc

    async def get(
        self, doc_id: Union[str, ObjectId, None], *, include_deleted: bool = False
    ) -> Optional[DocT]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        raw = await self._col.find_one(self._live({"_id": oid}, include_deleted))
        return self._load(raw)

    async def find_one(self, query: dict[str, Any]) -> Optional[DocT]:
        return self._load(await self._col.find_one(self._live(query)))

    async def find_by_public_id(self, public_id: str) -> Optional[DocT]:
        return await self.find_one({"public_id": public_id})

    async def find_many(
        self,
        query: dict[str, Any],
        *,
        sort: Optional[list[tuple[str, int]]] = None,
        limit: int = 0,
    ) -> list[DocT]:
        kwargs: dict[str, Any] = {"limit": limit}
        if sort:
            kwargs["sort"] = sort
        cursor = self._col.find(self._live(query), **kwargs)
        return [self._load(raw) for raw in await cursor.to_list(length=None)]

    async def count(self, query: dict[str, Any]) -> int:
        return await self._col.count_documents(self._live(query))

    async def find_one_and_update(
        self,
        query: dict[str, Any],
        update: dict[str, Any],
        *,
        sort: Optional[list[tuple[str, int]]] = None,
        include_deleted: bool = False,
    ) -> Optional[DocT]:
        """Apply *update* to the first document matching *query*; return it after the write."""
        kwargs: dict[str, Any] = {"return_document": ReturnDocument.AFTER}
        if sort:
            kwargs["sort"] = sort
        raw = await self._col.find_one_and_update(
            self._live(query, include_deleted), update, **kwargs
        )
        return self._load(raw)

    async def update_fields(
        self,
        doc_id: ObjectId,
        fields: dict[str, Any],
        *,
        condition: Optional[dict[str, Any]] = None,
    ) -> Optional[DocT]:
        query = {"_id": doc_id, **(condition or {})}
        return await self.find_one_and_update(query, {"$set": fields})

    async def mark_deleted(
        self,
        doc_id: ObjectId,
        *,
        now: datetime,
        deleted_by: str,
        extra: Optional[dict[str, Any]] = None,
    ) -> Optional[DocT]:
        """Soft-delete a live document. None when it is already gone."""
        fields = {
            "deleted_at": now,
            "deleted_by": deleted_by,
            "updated_at": now,
            "updated_by": deleted_by,
            **(extra or {}),
        }
        return await self.find_one_and_update({"_id": doc_id}, {"$set": fields})

    async def increment(self, doc_id: ObjectId, counters: dict[str, int | float]) -> None:
        await self._col.update_one({"_id": doc_id}, {"$inc": counters})
