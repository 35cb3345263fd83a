"""
Response DTOs for OAuth endpoints.

OAuthAppResponse          — one registered application
OAuthAppCreatedResult     — POST /api/v1/oauth/apps (201) — includes the secret once
ClientSecretRotatedResult — POST /api/v1/oauth/apps/{app_id}/rotate-secret
AuthorizationCodeResult   — POST /api/v1/oauth/authorize
TokenGrantResult          — POST /oauth/token; typed success-or-error result
TokenValidation           — result of validating a presented access token
OAuthAppStats             — GET /api/v1/oauth/apps/{app_id}/stats
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from schemas.models.oauth import OAuthAppDoc
from shared.datetime_utils import to_timestamp
from shared.rate_limit import RateLimit


class OAuthAppResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    app_id: str
    name: str
    description: Optional[str] = None
    client_id: str
    redirect_uris: list[str]
    scopes: list[str]
    grant_types: list[str]
    rate_limit: RateLimit
    is_active: bool
    is_verified: bool
    total_tokens: int
    logo_url: Optional[str] = None
    website: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    terms_of_service_url: Optional[str] = None
    created_at: Optional[int] = None
    secret_rotated_at: Optional[int] = None

    @classmethod
    def from_doc(cls, doc: OAuthAppDoc) -> "OAuthAppResponse":
        return cls(
            id=doc.public_id or str(doc.id),
            app_id=str(doc.id),
            name=doc.name,
            description=doc.description,
            client_id=doc.client_id,
            redirect_uris=doc.redirect_uris,
            scopes=doc.scopes,
            grant_types=list(doc.grant_types),
            rate_limit=doc.rate_limit,
            is_active=doc.is_active,
            is_verified=doc.is_verified,
            total_tokens=doc.total_tokens,
            logo_url=doc.logo_url,
            website=doc.website,
            privacy_policy_url=doc.privacy_policy_url,
            terms_of_service_url=doc.terms_of_service_url,
            created_at=to_timestamp(doc.created_at),
            secret_rotated_at=to_timestamp(doc.secret_rotated_at),
        )


class OAuthAppCreatedResult(OAuthAppResponse):
    """The plaintext ``client_secret`` is shown here and never again."""

    client_secret: str


class ClientSecretRotatedResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str
    client_secret: str
    rotated_at: int


class AuthorizationCodeResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    redirect_uri: str
    state: Optional[str] = None
    expires_in: int


class TokenGrantResult(BaseModel):
    """Token endpoint outcome.

    On success: ``access_token``, optional ``refresh_token``, ``token_type``
    and ``expires_in``. On failure: ``error`` (``invalid_client``,
    ``invalid_grant``, ``redirect_uri_mismatch``,
    ``authorization_code_expired``, ``unsupported_grant_type``…) plus a
    human-readable ``error_description``.

    Field aliases give the camelCase wire shape (``accessToken``,
    ``expiresIn``); ``to_oauth_dict`` gives the RFC 6749 snake_case one.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.access_token is not None

    @classmethod
    def failure(cls, error: str, description: str) -> "TokenGrantResult":
        return cls(error=error, error_description=description)

    def to_oauth_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


class TokenValidation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    valid: bool
    token_id: Optional[str] = None
    app_id: Optional[str] = None
    user_id: Optional[str] = None
    scopes: Optional[list[str]] = None
    expires_at: Optional[int] = None
    error: Optional[str] = None


class OAuthAppStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    app_id: str
    total_tokens: int
    tokens_issued: int
    active_tokens: int
    is_active: bool


class OAuthAppsListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    apps: list[OAuthAppResponse]
