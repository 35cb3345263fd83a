"""
OAuth document models.

OAuthAppDoc   — `oauth-apps`: registered client applications. Only the hash of
                the client secret is stored; rotation replaces it in place.
OAuthTokenDoc — `oauth-tokens`: polymorphic over token_type.
    "code"   — single-use authorization grant. access_token_hash holds the
               hashed code; is_revoked flips to True the instant it is
               exchanged, in the same conditional update that claims it.
    "Bearer" — an issued session: hashed access token, optional hashed
               refresh token, usage counter.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import Field

from schemas.models.base import AuditedDoc, PyObjectId, UTCDateTime
from shared.rate_limit import RateLimit

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_REFRESH_TOKEN = "refresh_token"

GrantType = Literal["authorization_code", "client_credentials", "refresh_token"]
GRANT_TYPES: frozenset[str] = frozenset(
    {GRANT_AUTHORIZATION_CODE, GRANT_CLIENT_CREDENTIALS, GRANT_REFRESH_TOKEN}
)

TOKEN_TYPE_CODE = "code"
TOKEN_TYPE_BEARER = "Bearer"


class OAuthAppDoc(AuditedDoc):
    """Document model for the `oauth-apps` collection."""

    name: str
    description: Optional[str] = None
    client_id: str
    client_secret_hash: str
    redirect_uris: list[str]
    scopes: list[str] = []
    grant_types: list[GrantType] = []
    rate_limit: RateLimit = Field(default_factory=RateLimit)
    logo_url: Optional[str] = None
    website: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    terms_of_service_url: Optional[str] = None
    is_active: bool = True
    is_verified: bool = False
    total_tokens: int = Field(default=0, ge=0)
    secret_rotated_at: Optional[UTCDateTime] = None
    metadata: Optional[dict[str, Any]] = None


class OAuthTokenDoc(AuditedDoc):
    """Document model for the `oauth-tokens` collection."""

    app_id: PyObjectId
    user_id: str
    token_type: Literal["code", "Bearer"]
    grant_type: Optional[GrantType] = None
    access_token_hash: str
    refresh_token_hash: Optional[str] = None
    scopes: list[str] = []
    expires_at: UTCDateTime
    refresh_token_expires_at: Optional[UTCDateTime] = None
    # Authorization codes remember what they were issued for
    redirect_uri: Optional[str] = None
    state: Optional[str] = None
    is_revoked: bool = False
    revoked_at: Optional[UTCDateTime] = None
    revoked_reason: Optional[str] = None
    usage_count: int = Field(default=0, ge=0)
    last_used_at: Optional[UTCDateTime] = None
