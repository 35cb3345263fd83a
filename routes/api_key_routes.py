"""
API key endpoints.

POST  /api/v1/keys                  — issue a key (plaintext token returned once)
GET   /api/v1/keys                  — list the caller's keys
GET   /api/v1/keys/verify           — check the key presented in X-API-Key
GET   /api/v1/keys/{key_id}         — one key
PATCH /api/v1/keys/{key_id}         — update name, scopes, limits, IP rules, expiry
POST  /api/v1/keys/{key_id}/revoke  — revoke (idempotent)
GET   /api/v1/keys/{key_id}/stats   — usage figures
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends

from dependencies import get_api_key_service, get_caller, require_api_key
from schemas.dto.requests.api_key import (
    CreateApiKeyRequest,
    RevokeApiKeyRequest,
    UpdateApiKeyRequest,
)
from schemas.dto.responses.api_key import (
    ApiKeyCreatedResult,
    ApiKeyResponse,
    ApiKeysListResponse,
    ApiKeyStats,
    ApiKeyValidation,
)
from services.access import Caller
from services.api_key_service import ApiKeyService

router = APIRouter(prefix="/api/v1/keys", tags=["api-keys"])


@router.post("", status_code=201, response_model=ApiKeyCreatedResult)
async def create_api_key(
    body: CreateApiKeyRequest,
    caller: Caller = Depends(get_caller),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyCreatedResult:
    return await service.create(caller, body)


@router.get("", response_model=ApiKeysListResponse)
async def list_api_keys(
    caller: Caller = Depends(get_caller),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeysListResponse:
    return ApiKeysListResponse(keys=await service.list_for_owner(caller))


@router.get("/verify", response_model=ApiKeyValidation)
async def verify_api_key(
    validation: ApiKeyValidation = Depends(require_api_key),
) -> ApiKeyValidation:
    """Echo the validation result (camelCase) for the key on this request."""
    return validation


@router.get("/{key_id}", response_model=ApiKeyResponse)
async def get_api_key(
    key_id: str,
    caller: Caller = Depends(get_caller),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyResponse:
    return await service.get(caller, key_id)


@router.patch("/{key_id}", response_model=ApiKeyResponse)
async def update_api_key(
    key_id: str,
    body: UpdateApiKeyRequest,
    caller: Caller = Depends(get_caller),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyResponse:
    return await service.update(caller, key_id, body)


@router.post("/{key_id}/revoke", response_model=ApiKeyResponse)
async def revoke_api_key(
    key_id: str,
    body: Optional[RevokeApiKeyRequest] = Body(default=None),
    caller: Caller = Depends(get_caller),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyResponse:
    return await service.revoke(caller, key_id, body.reason if body else None)


@router.get("/{key_id}/stats", response_model=ApiKeyStats)
async def api_key_stats(
    key_id: str,
    caller: Caller = Depends(get_caller),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyStats:
    return await service.stats(caller, key_id)
