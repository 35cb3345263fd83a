"""
OAuth authority — client registration and the code → token lifecycle.

Lifecycle of one authorization:

    issued (code) ──exchange──▶ Bearer pair ──▶ active ─┬─▶ expired
                                                        └─▶ revoked

Exchange is exactly-once: the code row is claimed with a single conditional
``find_one_and_update`` (``is_revoked: false, expires_at > now``) and only
the winner of that write gets a Bearer row. Every other caller presenting
the same code is told ``invalid_grant``.

Token-endpoint failures are TokenGrantResult values, never exceptions.
Errors raised here (InvalidClientError, InvalidRedirectUriError…) belong to
the authorize step and to app management, where a user is present.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Awaitable, Callable, Optional

from config import OAuthSettings
from errors import (
    InvalidClientError,
    InvalidRedirectUriError,
    InvalidScopeError,
    NotFoundError,
    ValidationError,
)
from repositories.audit_log_repository import AuditLogRepository
from repositories.base import to_object_id
from repositories.oauth_repository import OAuthAppRepository, OAuthTokenRepository
from schemas.dto.requests.oauth import (
    AuthorizeRequest,
    RegisterOAuthAppRequest,
    TokenRequest,
    UpdateOAuthAppRequest,
)
from schemas.dto.responses.oauth import (
    AuthorizationCodeResult,
    ClientSecretRotatedResult,
    OAuthAppCreatedResult,
    OAuthAppResponse,
    OAuthAppStats,
    TokenGrantResult,
    TokenValidation,
)
from schemas.models.oauth import (
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_REFRESH_TOKEN,
    TOKEN_TYPE_BEARER,
    TOKEN_TYPE_CODE,
    OAuthAppDoc,
    OAuthTokenDoc,
)
from services.access import AccessPolicy, Caller
from shared.clock import Clock, SystemClock
from shared.crypto import hash_token, verify_token
from shared.datetime_utils import to_timestamp
from shared.generators import (
    generate_access_token,
    generate_authorization_code,
    generate_client_id,
    generate_client_secret,
    generate_public_id,
    generate_refresh_token,
)
from shared.logging import get_logger, should_sample
from shared.rate_limit import RateLimit

log = get_logger(__name__)

# Token endpoint error codes
INVALID_CLIENT = "invalid_client"
INVALID_GRANT = "invalid_grant"
INVALID_REQUEST = "invalid_request"
INVALID_SCOPE = "invalid_scope"
REDIRECT_URI_MISMATCH = "redirect_uri_mismatch"
UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
AUTHORIZATION_CODE_EXPIRED = "authorization_code_expired"

# Token validation error codes
INVALID_TOKEN = "invalid_token"
TOKEN_EXPIRED = "token_expired"

_UNKNOWN_CLIENT_HASH = hash_token("unknown-oauth-client")

_REQUIRED_APP_FIELDS = ("name", "redirect_uris", "scopes", "grant_types", "rate_limit", "is_active")

GrantHandler = Callable[
    ["OAuthService", TokenRequest, Optional[OAuthAppDoc]], Awaitable[TokenGrantResult]
]


class OAuthService:
    def __init__(
        self,
        apps: OAuthAppRepository,
        tokens: OAuthTokenRepository,
        audit: AuditLogRepository,
        settings: OAuthSettings,
        *,
        clock: Optional[Clock] = None,
        policy: Optional[AccessPolicy] = None,
    ) -> None:
        self._apps = apps
        self._tokens = tokens
        self._audit = audit
        self._settings = settings
        self._clock = clock or SystemClock()
        self._policy = policy or AccessPolicy()

    # ── App lookup helpers ───────────────────────────────────────────────────

    async def _resolve_app(
        self, app_ref: Optional[str], *, include_deleted: bool = False
    ) -> Optional[OAuthAppDoc]:
        """Find an app by system id or public id."""
        if not app_ref:
            return None
        if to_object_id(app_ref) is not None:
            return await self._apps.get(app_ref, include_deleted=include_deleted)
        return await self._apps.find_by_public_id(app_ref)

    async def _get_owned_app(self, caller: Caller, app_ref: str) -> OAuthAppDoc:
        app = await self._resolve_app(app_ref)
        if app is None:
            raise NotFoundError("OAuth application not found")
        self._policy.ensure_can_manage(caller, app.owner_id, "OAuth application")
        return app

    # ── App management ───────────────────────────────────────────────────────

    async def register_app(
        self, caller: Caller, request: RegisterOAuthAppRequest
    ) -> OAuthAppCreatedResult:
        now = self._clock.now()
        client_secret = generate_client_secret()
        doc = OAuthAppDoc(
            public_id=generate_public_id("app_"),
            owner_id=caller.user_id,
            name=request.name,
            description=request.description,
            client_id=generate_client_id(),
            client_secret_hash=hash_token(client_secret),
            redirect_uris=request.redirect_uris,
            scopes=request.scopes,
            grant_types=request.grant_types,
            rate_limit=request.rate_limit or RateLimit(),
            logo_url=request.logo_url,
            website=request.website,
            privacy_policy_url=request.privacy_policy_url,
            terms_of_service_url=request.terms_of_service_url,
            created_at=now,
            created_by=caller.user_id,
            updated_at=now,
            updated_by=caller.user_id,
        )
        await self._apps.insert(doc)

        await self._audit.record(
            user_id=caller.user_id,
            action="oauth_app.create",
            entity_type="oauth_app",
            entity_id=doc.public_id,
            entity_title=doc.name,
            description=f'Registered OAuth application "{doc.name}"',
            metadata={"grant_types": list(doc.grant_types), "scopes": doc.scopes},
            now=now,
        )
        log.info(
            "oauth_app_registered",
            app_id=str(doc.id),
            client_id=doc.client_id,
            owner_id=caller.user_id,
        )
        return OAuthAppCreatedResult(
            **OAuthAppResponse.from_doc(doc).model_dump(), client_secret=client_secret
        )

    async def update_app(
        self, caller: Caller, app_ref: str, request: UpdateOAuthAppRequest
    ) -> OAuthAppResponse:
        app = await self._get_owned_app(caller, app_ref)
        now = self._clock.now()

        changes = request.changes()
        # Required fields cannot be cleared, an explicit null leaves them as they are
        for name in _REQUIRED_APP_FIELDS:
            if name in changes and changes[name] is None:
                del changes[name]
        if not changes:
            return OAuthAppResponse.from_doc(app)
        fields = sorted(changes)
        changes.update(updated_at=now, updated_by=caller.user_id)

        updated = await self._apps.update_fields(app.id, changes)
        if updated is None:
            raise NotFoundError("OAuth application not found")

        await self._audit.record(
            user_id=caller.user_id,
            action="oauth_app.update",
            entity_type="oauth_app",
            entity_id=app.public_id,
            entity_title=updated.name,
            description=f'Updated OAuth application "{updated.name}"',
            metadata={"fields": fields},
            now=now,
        )
        log.info("oauth_app_updated", app_id=str(app.id), fields=fields)
        return OAuthAppResponse.from_doc(updated)

    async def delete_app(self, caller: Caller, app_ref: str) -> None:
        """Soft-delete and deactivate an app. Its tokens stop validating at once."""
        app = await self._get_owned_app(caller, app_ref)
        now = self._clock.now()
        deleted = await self._apps.mark_deleted(
            app.id, now=now, deleted_by=caller.user_id, extra={"is_active": False}
        )
        if deleted is None:
            raise NotFoundError("OAuth application not found")

        await self._audit.record(
            user_id=caller.user_id,
            action="oauth_app.delete",
            entity_type="oauth_app",
            entity_id=app.public_id,
            entity_title=app.name,
            description=f'Deleted OAuth application "{app.name}"',
            now=now,
        )
        log.info("oauth_app_deleted", app_id=str(app.id))

    async def get_app(self, caller: Caller, app_ref: str) -> OAuthAppResponse:
        return OAuthAppResponse.from_doc(await self._get_owned_app(caller, app_ref))

    async def get_app_by_client_id(self, client_id: str) -> Optional[OAuthAppResponse]:
        """Public lookup used by consent screens; never exposes the secret hash."""
        app = await self._apps.find_by_client_id(client_id)
        if app is None or not app.is_active:
            return None
        return OAuthAppResponse.from_doc(app)

    async def list_apps(self, caller: Caller) -> list[OAuthAppResponse]:
        apps = await self._apps.list_for_owner(caller.user_id)
        return [OAuthAppResponse.from_doc(a) for a in apps]

    async def app_stats(self, caller: Caller, app_ref: str) -> OAuthAppStats:
        app = await self._get_owned_app(caller, app_ref)
        return OAuthAppStats(
            app_id=str(app.id),
            total_tokens=app.total_tokens,
            tokens_issued=await self._tokens.count_for_app(app.id),
            active_tokens=await self._tokens.count_active_for_app(app.id, self._clock.now()),
            is_active=app.is_active,
        )

    async def rotate_client_secret(
        self, caller: Caller, app_ref: str
    ) -> ClientSecretRotatedResult:
        """Replace the client secret. The old one stops working immediately;
        tokens already issued keep working."""
        app = await self._get_owned_app(caller, app_ref)
        now = self._clock.now()
        client_secret = generate_client_secret()

        rotated = await self._apps.replace_secret(
            app.id, hash_token(client_secret), now=now, updated_by=caller.user_id
        )
        if rotated is None:
            raise NotFoundError("OAuth application not found")

        await self._audit.record(
            user_id=caller.user_id,
            action="oauth_app.rotate_secret",
            entity_type="oauth_app",
            entity_id=app.public_id,
            entity_title=app.name,
            description=f'Rotated client secret of "{app.name}"',
            now=now,
        )
        log.info("oauth_client_secret_rotated", app_id=str(app.id), client_id=app.client_id)
        return ClientSecretRotatedResult(
            client_id=app.client_id,
            client_secret=client_secret,
            rotated_at=to_timestamp(now),
        )

    # ── Client authentication ────────────────────────────────────────────────

    async def authenticate_client(
        self, client_id: str, client_secret: str
    ) -> Optional[OAuthAppDoc]:
        """Return the app when the credentials match an active app, else None."""
        app = await self._apps.find_by_client_id(client_id.strip())
        stored_hash = app.client_secret_hash if app is not None else _UNKNOWN_CLIENT_HASH
        if not verify_token(client_secret, stored_hash) or app is None:
            return None
        if not app.is_active:
            return None
        return app

    # ── Authorization ────────────────────────────────────────────────────────

    async def create_authorization(
        self, caller: Caller, request: AuthorizeRequest
    ) -> AuthorizationCodeResult:
        """Issue a single-use authorization code for the calling user."""
        app = await self._resolve_app(request.app_id)
        if app is None or not app.is_active:
            raise InvalidClientError("unknown or inactive OAuth application", field="app_id")
        if request.redirect_uri not in app.redirect_uris:
            raise InvalidRedirectUriError(
                "redirect_uri is not registered for this application", field="redirect_uri"
            )
        if GRANT_AUTHORIZATION_CODE not in app.grant_types:
            raise ValidationError(
                "application does not allow the authorization_code grant", field="app_id"
            )
        unknown = [s for s in request.scopes if s not in app.scopes]
        if unknown:
            raise InvalidScopeError(
                "requested scopes are not registered for this application",
                field="scopes",
                details={"scopes": unknown},
            )

        now = self._clock.now()
        ttl = self._settings.oauth_authorization_code_ttl_seconds
        code = generate_authorization_code()
        row = OAuthTokenDoc(
            owner_id=app.owner_id,
            app_id=app.id,
            user_id=caller.user_id,
            token_type=TOKEN_TYPE_CODE,
            grant_type=GRANT_AUTHORIZATION_CODE,
            access_token_hash=hash_token(code),
            scopes=request.scopes,
            expires_at=now + timedelta(seconds=ttl),
            redirect_uri=request.redirect_uri,
            state=request.state,
            created_at=now,
            created_by=caller.user_id,
        )
        await self._tokens.insert(row)

        log.info(
            "authorization_code_issued",
            token_id=str(row.id),
            app_id=str(app.id),
            user_id=caller.user_id,
        )
        return AuthorizationCodeResult(
            code=code, redirect_uri=request.redirect_uri, state=request.state, expires_in=ttl
        )

    # ── Token issuance ───────────────────────────────────────────────────────

    async def _issue_bearer(
        self,
        app: OAuthAppDoc,
        *,
        user_id: str,
        scopes: list[str],
        grant_type: str,
        include_refresh: bool,
    ) -> TokenGrantResult:
        now = self._clock.now()
        ttl = self._settings.oauth_access_token_ttl_seconds
        access_token = generate_access_token()
        refresh_token = generate_refresh_token() if include_refresh else None

        row = OAuthTokenDoc(
            owner_id=app.owner_id,
            app_id=app.id,
            user_id=user_id,
            token_type=TOKEN_TYPE_BEARER,
            grant_type=grant_type,
            access_token_hash=hash_token(access_token),
            refresh_token_hash=hash_token(refresh_token) if refresh_token else None,
            scopes=scopes,
            expires_at=now + timedelta(seconds=ttl),
            refresh_token_expires_at=(
                now + timedelta(seconds=self._settings.oauth_refresh_token_ttl_seconds)
                if refresh_token
                else None
            ),
            created_at=now,
            created_by=user_id,
        )
        await self._tokens.insert(row)
        await self._apps.count_issued_token(app.id)

        log.info(
            "oauth_token_issued",
            token_id=str(row.id),
            app_id=str(app.id),
            grant_type=grant_type,
            refresh_issued=refresh_token is not None,
        )
        return TokenGrantResult(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=TOKEN_TYPE_BEARER,
            expires_in=ttl,
            scope=" ".join(scopes) or None,
        )

    @staticmethod
    def _fail(error: str, description: str, **context) -> TokenGrantResult:
        log.info("token_grant_failed", error_code=error, **context)
        return TokenGrantResult.failure(error, description)

    async def exchange_code(
        self, code: str, app_ref: str, redirect_uri: str
    ) -> TokenGrantResult:
        """Exchange an authorization code for a Bearer pair, at most once."""
        app = await self._resolve_app(app_ref)
        if app is None or not app.is_active:
            return self._fail(INVALID_CLIENT, "unknown or inactive application")
        if redirect_uri not in app.redirect_uris:
            return self._fail(
                REDIRECT_URI_MISMATCH,
                "redirect_uri is not registered for this application",
                app_id=str(app.id),
            )
        if GRANT_AUTHORIZATION_CODE not in app.grant_types:
            return self._fail(
                UNSUPPORTED_GRANT_TYPE,
                "application does not allow the authorization_code grant",
                app_id=str(app.id),
            )

        code_hash = hash_token(code.strip())
        row = await self._tokens.find_code(code_hash, app.id)
        if row is None:
            return self._fail(INVALID_GRANT, "authorization code is invalid", app_id=str(app.id))
        if row.redirect_uri != redirect_uri:
            return self._fail(
                REDIRECT_URI_MISMATCH,
                "redirect_uri does not match the authorization request",
                app_id=str(app.id),
            )

        now = self._clock.now()
        if row.expires_at <= now:
            return self._fail(
                AUTHORIZATION_CODE_EXPIRED, "authorization code has expired", app_id=str(app.id)
            )

        claimed = await self._tokens.claim_code(
            code_hash, app_id=app.id, redirect_uri=redirect_uri, now=now
        )
        if claimed is None:
            return self._fail(
                INVALID_GRANT,
                "authorization code has already been used",
                app_id=str(app.id),
                token_id=str(row.id),
            )

        return await self._issue_bearer(
            app,
            user_id=claimed.user_id,
            scopes=claimed.scopes,
            grant_type=GRANT_AUTHORIZATION_CODE,
            include_refresh=GRANT_REFRESH_TOKEN in app.grant_types,
        )

    async def refresh(self, refresh_token: str, app_ref: str) -> TokenGrantResult:
        """Issue a new Bearer pair from a refresh token.

        With ``oauth_rotate_refresh_tokens`` off the previous pair stays valid
        until it expires. With it on, the previous row is revoked by a
        conditional write first, so a refresh token works once.
        """
        app = await self._resolve_app(app_ref)
        if app is None or not app.is_active:
            return self._fail(INVALID_CLIENT, "unknown or inactive application")
        if GRANT_REFRESH_TOKEN not in app.grant_types:
            return self._fail(
                UNSUPPORTED_GRANT_TYPE,
                "application does not allow the refresh_token grant",
                app_id=str(app.id),
            )

        row = await self._tokens.find_by_refresh_hash(hash_token(refresh_token.strip()), app.id)
        if row is None or row.is_revoked:
            return self._fail(INVALID_GRANT, "refresh token is invalid", app_id=str(app.id))

        now = self._clock.now()
        if row.refresh_token_expires_at is not None and row.refresh_token_expires_at <= now:
            return self._fail(TOKEN_EXPIRED, "refresh token has expired", app_id=str(app.id))

        if self._settings.oauth_rotate_refresh_tokens:
            rotated = await self._tokens.revoke(row.id, now=now, reason="refreshed")
            if rotated is None:
                return self._fail(
                    INVALID_GRANT, "refresh token has already been used", app_id=str(app.id)
                )

        return await self._issue_bearer(
            app,
            user_id=row.user_id,
            scopes=row.scopes,
            grant_type=GRANT_REFRESH_TOKEN,
            include_refresh=True,
        )

    async def _grant_authorization_code(
        self, request: TokenRequest, client: Optional[OAuthAppDoc]
    ) -> TokenGrantResult:
        if not request.code or not request.redirect_uri:
            return self._fail(INVALID_REQUEST, "code and redirect_uri are required")
        app_ref = str(client.id) if client is not None else request.app_id
        if not app_ref:
            return self._fail(INVALID_CLIENT, "client_id or app_id is required")
        return await self.exchange_code(request.code, app_ref, request.redirect_uri.strip())

    async def _grant_client_credentials(
        self, request: TokenRequest, client: Optional[OAuthAppDoc]
    ) -> TokenGrantResult:
        if client is None:
            return self._fail(INVALID_CLIENT, "client authentication is required")
        if GRANT_CLIENT_CREDENTIALS not in client.grant_types:
            return self._fail(
                UNSUPPORTED_GRANT_TYPE,
                "application does not allow the client_credentials grant",
                app_id=str(client.id),
            )
        scopes = request.requested_scopes or client.scopes
        if any(s not in client.scopes for s in scopes):
            return self._fail(
                INVALID_SCOPE, "requested scopes are not registered for this application"
            )
        # The app acts on its owner's behalf
        return await self._issue_bearer(
            client,
            user_id=client.owner_id,
            scopes=list(dict.fromkeys(scopes)),
            grant_type=GRANT_CLIENT_CREDENTIALS,
            include_refresh=False,
        )

    async def _grant_refresh_token(
        self, request: TokenRequest, client: Optional[OAuthAppDoc]
    ) -> TokenGrantResult:
        if not request.refresh_token:
            return self._fail(INVALID_REQUEST, "refresh_token is required")
        app_ref = str(client.id) if client is not None else request.app_id
        if not app_ref:
            return self._fail(INVALID_CLIENT, "client_id or app_id is required")
        return await self.refresh(request.refresh_token, app_ref)

    GRANT_HANDLERS: dict[str, GrantHandler] = {
        GRANT_AUTHORIZATION_CODE: _grant_authorization_code,
        GRANT_CLIENT_CREDENTIALS: _grant_client_credentials,
        GRANT_REFRESH_TOKEN: _grant_refresh_token,
    }

    async def grant_token(self, request: TokenRequest) -> TokenGrantResult:
        """Token endpoint: dispatch on ``grant_type``."""
        handler = self.GRANT_HANDLERS.get(request.grant_type)
        if handler is None:
            return self._fail(
                UNSUPPORTED_GRANT_TYPE, f"grant type {request.grant_type!r} is not supported"
            )

        client: Optional[OAuthAppDoc] = None
        if request.client_id:
            client = await self.authenticate_client(
                request.client_id, request.client_secret or ""
            )
            if client is None:
                return self._fail(INVALID_CLIENT, "client authentication failed")
            if request.app_id and request.app_id not in (str(client.id), client.public_id):
                return self._fail(INVALID_CLIENT, "app_id does not belong to this client")

        return await handler(self, request, client)

    # ── Token validation & revocation ────────────────────────────────────────

    async def validate_access_token(self, token: str) -> TokenValidation:
        row = await self._tokens.find_by_access_hash(hash_token((token or "").strip()))
        if row is None or row.is_revoked:
            return TokenValidation(valid=False, error=INVALID_TOKEN)

        now = self._clock.now()
        if row.expires_at <= now:
            return TokenValidation(valid=False, error=TOKEN_EXPIRED)

        app = await self._apps.get(row.app_id)
        if app is None or not app.is_active:
            return TokenValidation(valid=False, error=INVALID_TOKEN)

        used = await self._tokens.record_use(row.id, now)
        if used is None:
            return TokenValidation(valid=False, error=INVALID_TOKEN)

        if should_sample("access_token_validated"):
            log.info("access_token_validated", token_id=str(used.id), app_id=str(app.id))
        return TokenValidation(
            valid=True,
            token_id=str(used.id),
            app_id=str(used.app_id),
            user_id=used.user_id,
            scopes=used.scopes,
            expires_at=to_timestamp(used.expires_at),
        )

    async def revoke_token(
        self, caller: Caller, token_id: str, reason: Optional[str] = None
    ) -> OAuthTokenDoc:
        """Revoke a token. The token's user, the app owner or an admin may do so.

        A second revoke leaves the first ``revoked_at``/``revoked_reason`` in place.
        """
        token = await self._tokens.get(token_id, include_deleted=True)
        if token is None:
            raise NotFoundError("token not found")
        if not (
            self._policy.can_manage(caller, token.user_id)
            or self._policy.can_manage(caller, token.owner_id)
        ):
            self._policy.ensure_can_manage(caller, token.owner_id, "token")

        now = self._clock.now()
        reason = reason.strip() if reason and reason.strip() else None
        revoked = await self._tokens.revoke(
            token.id, now=now, reason=reason, revoked_by=caller.user_id
        )
        if revoked is None:
            log.info("oauth_token_revoke_noop", token_id=str(token.id))
            return await self._tokens.get(token.id, include_deleted=True) or token

        log.info("oauth_token_revoked", token_id=str(token.id), app_id=str(token.app_id))
        return revoked
