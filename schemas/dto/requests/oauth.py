"""
Request DTOs for OAuth application and token endpoints.

RegisterOAuthAppRequest — POST /api/v1/oauth/apps
UpdateOAuthAppRequest   — PATCH /api/v1/oauth/apps/{app_id}
AuthorizeRequest        — POST /api/v1/oauth/authorize
TokenRequest            — POST /oauth/token
ValidateTokenRequest    — POST /oauth/validate
RevokeTokenRequest      — POST /api/v1/oauth/tokens/{token_id}/revoke
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from schemas.dto.requests.common import (
    SCOPES_MAX,
    check_description,
    check_name,
    check_string_set,
    check_url,
)
from schemas.models.oauth import GRANT_TYPES, GrantType
from shared.rate_limit import RateLimit

REDIRECT_URIS_MAX = 10


def _check_redirect_uris(values: list[str]) -> list[str]:
    if not values:
        raise ValueError("redirect_uris must contain at least one URI")
    if len(values) > REDIRECT_URIS_MAX:
        raise ValueError(f"redirect_uris must contain at most {REDIRECT_URIS_MAX} entries")
    uris: list[str] = []
    for value in values:
        # No normalisation beyond trimming: matching is exact, trailing slash included
        uri = check_url(value, "redirect_uri")
        if uri not in uris:
            uris.append(uri)
    return uris


def _check_grant_types(values: list[str]) -> list[str]:
    if not values:
        raise ValueError("grant_types must be a non-empty array")
    unknown = set(values) - GRANT_TYPES
    if unknown:
        raise ValueError(f"unsupported grant type(s): {', '.join(sorted(unknown))}")
    return list(dict.fromkeys(values))


def _check_optional_url(value: Optional[str], field: str) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return check_url(value, field)


class RegisterOAuthAppRequest(BaseModel):
    """Request body for POST /api/v1/oauth/apps."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    redirect_uris: list[str]
    scopes: list[str]
    grant_types: list[GrantType] = Field(default_factory=lambda: ["authorization_code", "refresh_token"])
    rate_limit: Optional[RateLimit] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    terms_of_service_url: Optional[str] = None

    @field_validator("name", mode="after")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        return check_name(v)

    @field_validator("description", mode="after")
    @classmethod
    def _validate_description(cls, v: Optional[str]) -> Optional[str]:
        return check_description(v)

    @field_validator("redirect_uris", mode="after")
    @classmethod
    def _validate_redirect_uris(cls, v: list[str]) -> list[str]:
        return _check_redirect_uris(v)

    @field_validator("scopes", mode="after")
    @classmethod
    def _validate_scopes(cls, v: list[str]) -> list[str]:
        return check_string_set(v, "scopes", max_items=SCOPES_MAX)

    @field_validator("grant_types", mode="after")
    @classmethod
    def _validate_grant_types(cls, v: list[str]) -> list[str]:
        return _check_grant_types(v)

    @field_validator(
        "logo_url", "website", "privacy_policy_url", "terms_of_service_url", mode="after"
    )
    @classmethod
    def _validate_links(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        return _check_optional_url(v, info.field_name)


class UpdateOAuthAppRequest(BaseModel):
    """Request body for PATCH /api/v1/oauth/apps/{app_id}.

    The client id and secret are not updatable here; use the rotate-secret
    endpoint for the secret.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    redirect_uris: Optional[list[str]] = None
    scopes: Optional[list[str]] = None
    grant_types: Optional[list[GrantType]] = None
    rate_limit: Optional[RateLimit] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    terms_of_service_url: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("name", mode="after")
    @classmethod
    def _validate_name(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else check_name(v)

    @field_validator("description", mode="after")
    @classmethod
    def _validate_description(cls, v: Optional[str]) -> Optional[str]:
        return check_description(v)

    @field_validator("redirect_uris", mode="after")
    @classmethod
    def _validate_redirect_uris(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else _check_redirect_uris(v)

    @field_validator("scopes", mode="after")
    @classmethod
    def _validate_scopes(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else check_string_set(v, "scopes", max_items=SCOPES_MAX)

    @field_validator("grant_types", mode="after")
    @classmethod
    def _validate_grant_types(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else _check_grant_types(v)

    @field_validator(
        "logo_url", "website", "privacy_policy_url", "terms_of_service_url", mode="after"
    )
    @classmethod
    def _validate_links(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        return _check_optional_url(v, info.field_name)

    @model_validator(mode="after")
    def _require_a_change(self) -> "UpdateOAuthAppRequest":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class AuthorizeRequest(BaseModel):
    """Request body for POST /api/v1/oauth/authorize (resource owner present)."""

    model_config = ConfigDict(populate_by_name=True)

    app_id: str
    redirect_uri: str
    scopes: list[str]
    state: Optional[str] = Field(default=None, max_length=500)

    @field_validator("scopes", mode="after")
    @classmethod
    def _validate_scopes(cls, v: list[str]) -> list[str]:
        return check_string_set(v, "scopes", max_items=SCOPES_MAX)

    @field_validator("redirect_uri", mode="after")
    @classmethod
    def _strip_redirect_uri(cls, v: str) -> str:
        return v.strip()


class TokenRequest(BaseModel):
    """Request body for POST /oauth/token.

    Which fields are required depends on ``grant_type``; the authority checks
    them and answers with a typed error result rather than a 400.
    """

    model_config = ConfigDict(populate_by_name=True)

    grant_type: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    app_id: Optional[str] = None
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    refresh_token: Optional[str] = None
    # Space-separated, as in RFC 6749
    scope: Optional[str] = None

    @property
    def requested_scopes(self) -> Optional[list[str]]:
        if not self.scope:
            return None
        return [s for s in self.scope.split() if s]


class ValidateTokenRequest(BaseModel):
    """Request body for POST /oauth/validate."""

    model_config = ConfigDict(populate_by_name=True)

    token: str


class RevokeTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: Optional[str] = Field(default=None, max_length=500)
