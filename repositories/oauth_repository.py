"""Repositories for the `oauth-apps` and `oauth-tokens` collections."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId

from repositories.base import BaseRepository
from schemas.models.oauth import TOKEN_TYPE_BEARER, TOKEN_TYPE_CODE, OAuthAppDoc, OAuthTokenDoc


class OAuthAppRepository(BaseRepository[OAuthAppDoc]):
    collection_name = "oauth-apps"
    model = OAuthAppDoc

    async def find_by_client_id(self, client_id: str) -> Optional[OAuthAppDoc]:
        return await self.find_one({"client_id": client_id})

    async def list_for_owner(self, owner_id: str) -> list[OAuthAppDoc]:
        return await self.find_many({"owner_id": owner_id}, sort=[("created_at", -1)])

    async def replace_secret(
        self, app_id: ObjectId, secret_hash: str, *, now: datetime, updated_by: str
    ) -> Optional[OAuthAppDoc]:
        return await self.update_fields(
            app_id,
            {
                "client_secret_hash": secret_hash,
                "secret_rotated_at": now,
                "updated_at": now,
                "updated_by": updated_by,
            },
        )

    async def count_issued_token(self, app_id: ObjectId) -> None:
        await self.increment(app_id, {"total_tokens": 1})


class OAuthTokenRepository(BaseRepository[OAuthTokenDoc]):
    collection_name = "oauth-tokens"
    model = OAuthTokenDoc

    async def find_code(self, code_hash: str, app_id: ObjectId) -> Optional[OAuthTokenDoc]:
        return await self.find_one(
            {
                "access_token_hash": code_hash,
                "token_type": TOKEN_TYPE_CODE,
                "app_id": app_id,
            }
        )

    async def claim_code(
        self,
        code_hash: str,
        *,
        app_id: ObjectId,
        redirect_uri: str,
        now: datetime,
    ) -> Optional[OAuthTokenDoc]:
        """Mark an unused, unexpired code as exchanged in one conditional write.

        Of any number of concurrent callers presenting the same code, exactly
        one gets the document back; the rest get None.
        """
        return await self.find_one_and_update(
            {
                "access_token_hash": code_hash,
                "token_type": TOKEN_TYPE_CODE,
                "app_id": app_id,
                "redirect_uri": redirect_uri,
                "is_revoked": False,
                "expires_at": {"$gt": now},
            },
            {
                "$set": {
                    "is_revoked": True,
                    "revoked_at": now,
                    "revoked_reason": "exchanged",
                    "updated_at": now,
                }
            },
        )

    async def find_by_access_hash(self, token_hash: str) -> Optional[OAuthTokenDoc]:
        return await self.find_one(
            {"access_token_hash": token_hash, "token_type": TOKEN_TYPE_BEARER}
        )

    async def find_by_refresh_hash(
        self, refresh_hash: str, app_id: ObjectId
    ) -> Optional[OAuthTokenDoc]:
        return await self.find_one(
            {
                "refresh_token_hash": refresh_hash,
                "token_type": TOKEN_TYPE_BEARER,
                "app_id": app_id,
            }
        )

    async def record_use(self, token_id: ObjectId, now: datetime) -> Optional[OAuthTokenDoc]:
        return await self.find_one_and_update(
            {"_id": token_id, "is_revoked": False},
            {"$inc": {"usage_count": 1}, "$set": {"last_used_at": now}},
        )

    async def revoke(
        self,
        token_id: ObjectId,
        *,
        now: datetime,
        reason: Optional[str],
        revoked_by: Optional[str] = None,
    ) -> Optional[OAuthTokenDoc]:
        """Revoke a live token. None when it was already revoked."""
        return await self.find_one_and_update(
            {"_id": token_id, "is_revoked": False},
            {
                "$set": {
                    "is_revoked": True,
                    "revoked_at": now,
                    "revoked_reason": reason,
                    "updated_at": now,
                    "updated_by": revoked_by,
                }
            },
            include_deleted=True,
        )

    async def count_active_for_app(self, app_id: ObjectId, now: datetime) -> int:
        return await self.count(
            {
                "app_id": app_id,
                "token_type": TOKEN_TYPE_BEARER,
                "is_revoked": False,
                "expires_at": {"$gt": now},
            }
        )

    async def count_for_app(self, app_id: ObjectId) -> int:
        return await self.count({"app_id": app_id, "token_type": TOKEN_TYPE_BEARER})
