"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain async functions
used with FastAPI's Depends() system.

Two kinds of callers reach the API:
- users, identified by a host-issued JWT (``Authorization: Bearer <jwt>``)
- integrations, identified by an API key (``X-API-Key: sk_…``)
"""

from __future__ import annotations

from typing import Optional

import jwt
from fastapi import Depends, Request, Response

from config import AppSettings
from errors import AuthenticationError, RateLimitError
from schemas.dto.responses.api_key import ApiKeyValidation
from services.access import Caller
from services.api_key_service import ApiKeyService
from services.container import ServiceContainer
from services.integration_service import IntegrationService
from services.oauth_service import OAuthService
from services.webhook_service import WebhookService
from shared.crypto import API_KEY_MARKER
from shared.ip_utils import get_client_ip
from shared.logging import get_logger

log = get_logger(__name__)


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


async def get_db(request: Request):
    """Return the async MongoDB database from app.state."""
    return request.app.state.db


async def get_redis(request: Request):
    """Return the async Redis client from app.state (may be None if not configured)."""
    return request.app.state.redis


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_api_key_service(services: ServiceContainer = Depends(get_services)) -> ApiKeyService:
    return services.api_keys


def get_oauth_service(services: ServiceContainer = Depends(get_services)) -> OAuthService:
    return services.oauth


def get_webhook_service(services: ServiceContainer = Depends(get_services)) -> WebhookService:
    return services.webhooks


def get_integration_service(
    services: ServiceContainer = Depends(get_services),
) -> IntegrationService:
    return services.integrations


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def verify_access_jwt(token: str, settings: AppSettings) -> dict:
    """Decode a host-issued access JWT (RS256 when a public key is configured, else HS256)."""
    jwt_settings = settings.jwt
    if jwt_settings.use_rs256:
        key, algorithm = jwt_settings.jwt_public_key, "RS256"
    else:
        key, algorithm = jwt_settings.jwt_secret, "HS256"
    return jwt.decode(
        token,
        key,
        algorithms=[algorithm],
        audience=jwt_settings.jwt_audience,
        issuer=jwt_settings.jwt_issuer,
    )


async def get_caller(
    request: Request, settings: AppSettings = Depends(get_settings)
) -> Caller:
    """Resolve the calling user from the access JWT; 401 when absent or invalid."""
    token = _bearer_token(request)
    if not token:
        raise AuthenticationError("missing access token")
    try:
        claims = verify_access_jwt(token, settings)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("access token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("invalid access token")

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("access token has no subject")
    return Caller(user_id=str(user_id), role=str(claims.get("role") or "user"))


async def require_api_key(
    request: Request,
    response: Response,
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyValidation:
    """Authenticate an API-key request and attach ``X-RateLimit-*`` headers."""
    raw_key = request.headers.get("X-API-Key")
    if not raw_key:
        bearer = _bearer_token(request)
        if bearer and bearer.startswith(API_KEY_MARKER):
            raw_key = bearer
    if not raw_key:
        raise AuthenticationError("missing API key")

    auth = await service.authenticate(raw_key, get_client_ip(request) or None)
    if not auth.validation.valid:
        raise AuthenticationError(
            "invalid API key", details={"reason": auth.validation.error}
        )

    # Read by the request middleware, which logs the finished request against this key
    request.state.api_key_id = auth.validation.key_id

    headers = auth.decision.headers() if auth.decision is not None else {}
    if not auth.allowed:
        raise RateLimitError(
            f"rate limit exceeded for the current {auth.decision.window}",
            headers=headers,
        )
    response.headers.update(headers)
    return auth.validation
