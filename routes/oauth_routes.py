"""
OAuth endpoints.

Management (caller JWT required):
    POST   /api/v1/oauth/apps                         — register an app (secret returned once)
    GET    /api/v1/oauth/apps                         — list the caller's apps
    GET    /api/v1/oauth/apps/{app_id}                — one app
    PATCH  /api/v1/oauth/apps/{app_id}                — update
    DELETE /api/v1/oauth/apps/{app_id}                — soft delete
    POST   /api/v1/oauth/apps/{app_id}/rotate-secret  — new client secret
    GET    /api/v1/oauth/apps/{app_id}/stats          — token figures
    POST   /api/v1/oauth/authorize                    — issue an authorization code
    POST   /api/v1/oauth/tokens/{token_id}/revoke     — revoke a token

Public:
    GET    /api/v1/oauth/clients/{client_id}          — consent-screen info
    POST   /oauth/token                               — token endpoint
    POST   /oauth/validate                            — access token check
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from dependencies import get_caller, get_oauth_service
from errors import NotFoundError
from schemas.dto.requests.oauth import (
    AuthorizeRequest,
    RegisterOAuthAppRequest,
    RevokeTokenRequest,
    TokenRequest,
    UpdateOAuthAppRequest,
    ValidateTokenRequest,
)
from schemas.dto.responses.common import MessageResponse
from schemas.dto.responses.oauth import (
    AuthorizationCodeResult,
    ClientSecretRotatedResult,
    OAuthAppCreatedResult,
    OAuthAppResponse,
    OAuthAppsListResponse,
    OAuthAppStats,
    TokenValidation,
)
from services.access import Caller
from services.oauth_service import INVALID_CLIENT, OAuthService

router = APIRouter(prefix="/api/v1/oauth", tags=["oauth"])
token_router = APIRouter(prefix="/oauth", tags=["oauth"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


@router.post("/apps", status_code=201, response_model=OAuthAppCreatedResult)
async def register_app(
    body: RegisterOAuthAppRequest,
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> OAuthAppCreatedResult:
    return await service.register_app(caller, body)


@router.get("/apps", response_model=OAuthAppsListResponse)
async def list_apps(
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> OAuthAppsListResponse:
    return OAuthAppsListResponse(apps=await service.list_apps(caller))


@router.get("/apps/{app_id}", response_model=OAuthAppResponse)
async def get_app(
    app_id: str,
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> OAuthAppResponse:
    return await service.get_app(caller, app_id)


@router.patch("/apps/{app_id}", response_model=OAuthAppResponse)
async def update_app(
    app_id: str,
    body: UpdateOAuthAppRequest,
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> OAuthAppResponse:
    return await service.update_app(caller, app_id, body)


@router.delete("/apps/{app_id}", response_model=MessageResponse)
async def delete_app(
    app_id: str,
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> MessageResponse:
    await service.delete_app(caller, app_id)
    return MessageResponse(success=True, message="OAuth application deleted")


@router.post("/apps/{app_id}/rotate-secret", response_model=ClientSecretRotatedResult)
async def rotate_client_secret(
    app_id: str,
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> ClientSecretRotatedResult:
    return await service.rotate_client_secret(caller, app_id)


@router.get("/apps/{app_id}/stats", response_model=OAuthAppStats)
async def app_stats(
    app_id: str,
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> OAuthAppStats:
    return await service.app_stats(caller, app_id)


@router.get("/clients/{client_id}", response_model=OAuthAppResponse)
async def get_client(
    client_id: str,
    service: OAuthService = Depends(get_oauth_service),
) -> OAuthAppResponse:
    app = await service.get_app_by_client_id(client_id)
    if app is None:
        raise NotFoundError("OAuth client not found")
    return app


@router.post("/authorize", response_model=AuthorizationCodeResult)
async def authorize(
    body: AuthorizeRequest,
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> AuthorizationCodeResult:
    return await service.create_authorization(caller, body)


@router.post("/tokens/{token_id}/revoke", response_model=MessageResponse)
async def revoke_token(
    token_id: str,
    body: Optional[RevokeTokenRequest] = Body(default=None),
    caller: Caller = Depends(get_caller),
    service: OAuthService = Depends(get_oauth_service),
) -> MessageResponse:
    await service.revoke_token(caller, token_id, body.reason if body else None)
    return MessageResponse(success=True, message="token revoked")


@token_router.post("/token")
async def token(
    body: TokenRequest,
    service: OAuthService = Depends(get_oauth_service),
) -> JSONResponse:
    """Token endpoint. Errors are returned in the body, never raised."""
    result = await service.grant_token(body)
    if result.ok:
        status_code = 200
    elif result.error == INVALID_CLIENT:
        status_code = 401
    else:
        status_code = 400
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(by_alias=True, exclude_none=True),
        headers=_NO_STORE,
    )


@token_router.post("/validate", response_model=TokenValidation)
async def validate_token(
    body: ValidateTokenRequest,
    service: OAuthService = Depends(get_oauth_service),
) -> TokenValidation:
    return await service.validate_access_token(body.token)
