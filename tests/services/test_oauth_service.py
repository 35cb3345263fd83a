"""Tests for OAuthService: app registration, code exchange, refresh and token validation."""

import asyncio

import pytest

from config import OAuthSettings
from errors import ForbiddenError, InvalidClientError, InvalidRedirectUriError, InvalidScopeError
from repositories.oauth_repository import OAuthAppRepository, OAuthTokenRepository
from schemas.dto.requests.oauth import (
    AuthorizeRequest,
    RegisterOAuthAppRequest,
    TokenRequest,
    UpdateOAuthAppRequest,
)
from services.oauth_service import (
    AUTHORIZATION_CODE_EXPIRED,
    INVALID_CLIENT,
    INVALID_GRANT,
    INVALID_SCOPE,
    INVALID_TOKEN,
    REDIRECT_URI_MISMATCH,
    TOKEN_EXPIRED,
    UNSUPPORTED_GRANT_TYPE,
    OAuthService,
)

REDIRECT = "https://client.example.com/callback"


async def _register(service, caller, **overrides):
    body = {
        "name": "Reporting dashboard",
        "redirect_uris": [REDIRECT],
        "scopes": ["urls:read", "stats:read"],
    }
    body.update(overrides)
    return await service.register_app(caller, RegisterOAuthAppRequest(**body))


async def _authorize(service, caller, app, scopes=("urls:read",), state="xyz"):
    return await service.create_authorization(
        caller,
        AuthorizeRequest(app_id=app.id, redirect_uri=REDIRECT, scopes=list(scopes), state=state),
    )


async def _token_pair(service, caller):
    app = await _register(service, caller)
    auth = await _authorize(service, caller, app)
    grant = await service.exchange_code(auth.code, app.id, REDIRECT)
    assert grant.ok
    return app, grant


# ── App management ────────────────────────────────────────────────────────────


class TestRegisterApp:
    async def test_secret_is_returned_once_and_stored_hashed(self, oauth_service, owner, db):
        app = await _register(oauth_service, owner)

        assert app.id.startswith("app_")
        assert app.client_secret
        assert app.grant_types == ["authorization_code", "refresh_token"]
        stored = await db["oauth-apps"].find_one({"client_id": app.client_id})
        assert app.client_secret not in stored.values()

    async def test_registration_is_audited(self, oauth_service, owner, audit):
        app = await _register(oauth_service, owner)
        entries = await audit.for_entity("oauth_app", app.id)
        assert [e.action for e in entries] == ["oauth_app.create"]

    async def test_authenticate_client(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        assert (await oauth_service.authenticate_client(app.client_id, app.client_secret)) is not None
        assert (await oauth_service.authenticate_client(app.client_id, "wrong")) is None
        assert (await oauth_service.authenticate_client("unknown", app.client_secret)) is None

    async def test_rotating_secret_invalidates_the_old_one(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        rotated = await oauth_service.rotate_client_secret(owner, app.id)

        assert rotated.client_secret != app.client_secret
        assert await oauth_service.authenticate_client(app.client_id, app.client_secret) is None
        assert await oauth_service.authenticate_client(app.client_id, rotated.client_secret)

    async def test_deactivated_app_cannot_authenticate(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        await oauth_service.update_app(owner, app.id, UpdateOAuthAppRequest(is_active=False))
        assert await oauth_service.authenticate_client(app.client_id, app.client_secret) is None
        assert await oauth_service.get_app_by_client_id(app.client_id) is None

    async def test_other_user_cannot_manage(self, oauth_service, owner, other_user):
        app = await _register(oauth_service, owner)
        with pytest.raises(ForbiddenError):
            await oauth_service.rotate_client_secret(other_user, app.id)


# ── Authorization ─────────────────────────────────────────────────────────────


class TestAuthorize:
    async def test_code_issued_with_state(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        auth = await _authorize(oauth_service, owner, app)
        assert auth.code
        assert auth.state == "xyz"
        assert auth.expires_in == 600

    async def test_unregistered_redirect_uri(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        with pytest.raises(InvalidRedirectUriError):
            await oauth_service.create_authorization(
                owner,
                AuthorizeRequest(
                    app_id=app.id, redirect_uri="https://evil.example.com/cb", scopes=["urls:read"]
                ),
            )

    async def test_unknown_scope(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        with pytest.raises(InvalidScopeError):
            await _authorize(oauth_service, owner, app, scopes=["admin:all"])

    async def test_unknown_app(self, oauth_service, owner):
        with pytest.raises(InvalidClientError):
            await oauth_service.create_authorization(
                owner,
                AuthorizeRequest(app_id="app_missing", redirect_uri=REDIRECT, scopes=["urls:read"]),
            )


# ── Code exchange ─────────────────────────────────────────────────────────────


class TestExchangeCode:
    async def test_exchange_issues_bearer_pair(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        auth = await _authorize(oauth_service, owner, app)

        grant = await oauth_service.exchange_code(auth.code, app.id, REDIRECT)

        assert grant.ok
        assert grant.token_type == "Bearer"
        assert grant.refresh_token
        assert grant.expires_in == 3600
        assert grant.scope == "urls:read"

    async def test_code_works_exactly_once_under_concurrency(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        auth = await _authorize(oauth_service, owner, app)

        results = await asyncio.gather(
            oauth_service.exchange_code(auth.code, app.id, REDIRECT),
            oauth_service.exchange_code(auth.code, app.id, REDIRECT),
        )

        assert sorted(r.ok for r in results) == [False, True]
        loser = next(r for r in results if not r.ok)
        assert loser.error == INVALID_GRANT
        stats = await oauth_service.app_stats(owner, app.id)
        assert stats.tokens_issued == 1

    async def test_second_exchange_fails(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        auth = await _authorize(oauth_service, owner, app)
        await oauth_service.exchange_code(auth.code, app.id, REDIRECT)

        again = await oauth_service.exchange_code(auth.code, app.id, REDIRECT)
        assert again.error == INVALID_GRANT

    async def test_redirect_uri_must_match_exactly(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        auth = await _authorize(oauth_service, owner, app)

        result = await oauth_service.exchange_code(auth.code, app.id, REDIRECT + "/")
        assert result.error == REDIRECT_URI_MISMATCH

        # the code is still usable with the right URI
        assert (await oauth_service.exchange_code(auth.code, app.id, REDIRECT)).ok

    async def test_expired_code(self, oauth_service, owner, clock):
        app = await _register(oauth_service, owner)
        auth = await _authorize(oauth_service, owner, app)
        clock.advance(seconds=601)

        result = await oauth_service.exchange_code(auth.code, app.id, REDIRECT)
        assert result.error == AUTHORIZATION_CODE_EXPIRED

    async def test_code_bound_to_its_app(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        other_app = await _register(oauth_service, owner, name="Another app")
        auth = await _authorize(oauth_service, owner, app)

        result = await oauth_service.exchange_code(auth.code, other_app.id, REDIRECT)
        assert result.error == INVALID_GRANT

    async def test_unknown_app(self, oauth_service):
        result = await oauth_service.exchange_code("code", "app_missing", REDIRECT)
        assert result.error == INVALID_CLIENT


# ── Refresh ───────────────────────────────────────────────────────────────────


class TestRefresh:
    async def test_refresh_without_rotation_keeps_previous_pair(self, oauth_service, owner):
        app, grant = await _token_pair(oauth_service, owner)

        refreshed = await oauth_service.refresh(grant.refresh_token, app.id)

        assert refreshed.ok
        assert refreshed.access_token != grant.access_token
        assert (await oauth_service.validate_access_token(grant.access_token)).valid
        assert (await oauth_service.refresh(grant.refresh_token, app.id)).ok

    async def test_refresh_with_rotation_works_once(self, db, audit, clock, owner):
        service = OAuthService(
            OAuthAppRepository(db),
            OAuthTokenRepository(db),
            audit,
            OAuthSettings(oauth_rotate_refresh_tokens=True),
            clock=clock,
        )
        app, grant = await _token_pair(service, owner)

        first = await service.refresh(grant.refresh_token, app.id)
        second = await service.refresh(grant.refresh_token, app.id)

        assert first.ok
        assert second.error == INVALID_GRANT
        assert (await service.validate_access_token(grant.access_token)).error == INVALID_TOKEN

    async def test_unknown_refresh_token(self, oauth_service, owner):
        app, _ = await _token_pair(oauth_service, owner)
        assert (await oauth_service.refresh("nope", app.id)).error == INVALID_GRANT

    async def test_expired_refresh_token(self, oauth_service, owner, clock):
        app, grant = await _token_pair(oauth_service, owner)
        clock.advance(days=31)
        assert (await oauth_service.refresh(grant.refresh_token, app.id)).error == TOKEN_EXPIRED


# ── Token endpoint ────────────────────────────────────────────────────────────


class TestGrantToken:
    async def test_authorization_code_with_client_credentials(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        auth = await _authorize(oauth_service, owner, app)

        result = await oauth_service.grant_token(
            TokenRequest(
                grant_type="authorization_code",
                client_id=app.client_id,
                client_secret=app.client_secret,
                code=auth.code,
                redirect_uri=REDIRECT,
            )
        )
        assert result.ok

    async def test_bad_client_secret(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        result = await oauth_service.grant_token(
            TokenRequest(
                grant_type="authorization_code",
                client_id=app.client_id,
                client_secret="wrong",
                code="whatever",
                redirect_uri=REDIRECT,
            )
        )
        assert result.error == INVALID_CLIENT

    async def test_client_credentials_grant(self, oauth_service, owner):
        app = await _register(
            oauth_service, owner, grant_types=["client_credentials"]
        )
        result = await oauth_service.grant_token(
            TokenRequest(
                grant_type="client_credentials",
                client_id=app.client_id,
                client_secret=app.client_secret,
                scope="urls:read",
            )
        )

        assert result.ok
        assert result.refresh_token is None
        validation = await oauth_service.validate_access_token(result.access_token)
        assert validation.user_id == owner.user_id
        assert validation.scopes == ["urls:read"]

    async def test_client_credentials_rejects_unregistered_scope(self, oauth_service, owner):
        app = await _register(oauth_service, owner, grant_types=["client_credentials"])
        result = await oauth_service.grant_token(
            TokenRequest(
                grant_type="client_credentials",
                client_id=app.client_id,
                client_secret=app.client_secret,
                scope="admin:all",
            )
        )
        assert result.error == INVALID_SCOPE

    async def test_grant_not_enabled_for_app(self, oauth_service, owner):
        app = await _register(oauth_service, owner)
        result = await oauth_service.grant_token(
            TokenRequest(
                grant_type="client_credentials",
                client_id=app.client_id,
                client_secret=app.client_secret,
            )
        )
        assert result.error == UNSUPPORTED_GRANT_TYPE

    async def test_unsupported_grant_type(self, oauth_service):
        result = await oauth_service.grant_token(TokenRequest(grant_type="password"))
        assert result.error == UNSUPPORTED_GRANT_TYPE


# ── Validation & revocation ───────────────────────────────────────────────────


class TestValidateAccessToken:
    async def test_valid_token_counts_usage(self, oauth_service, owner, db):
        _, grant = await _token_pair(oauth_service, owner)

        first = await oauth_service.validate_access_token(grant.access_token)
        await oauth_service.validate_access_token(grant.access_token)

        assert first.valid
        assert first.user_id == owner.user_id
        row = await OAuthTokenRepository(db).get(first.token_id)
        assert row.usage_count == 2

    async def test_unknown_token(self, oauth_service):
        assert (await oauth_service.validate_access_token("bogus")).error == INVALID_TOKEN

    async def test_expired_token(self, oauth_service, owner, clock):
        _, grant = await _token_pair(oauth_service, owner)
        clock.advance(seconds=3600)
        assert (await oauth_service.validate_access_token(grant.access_token)).error == TOKEN_EXPIRED

    async def test_deleted_app_invalidates_tokens(self, oauth_service, owner):
        app, grant = await _token_pair(oauth_service, owner)
        await oauth_service.delete_app(owner, app.id)
        assert (await oauth_service.validate_access_token(grant.access_token)).error == INVALID_TOKEN

    async def test_revoke_is_idempotent(self, oauth_service, owner, clock):
        _, grant = await _token_pair(oauth_service, owner)
        token_id = (await oauth_service.validate_access_token(grant.access_token)).token_id

        first = await oauth_service.revoke_token(owner, token_id, "user request")
        clock.advance(minutes=1)
        second = await oauth_service.revoke_token(owner, token_id, "again")

        assert first.is_revoked and second.is_revoked
        assert second.revoked_at == first.revoked_at
        assert second.revoked_reason == "user request"
        assert (await oauth_service.validate_access_token(grant.access_token)).error == INVALID_TOKEN

    async def test_stranger_cannot_revoke(self, oauth_service, owner, other_user):
        _, grant = await _token_pair(oauth_service, owner)
        token_id = (await oauth_service.validate_access_token(grant.access_token)).token_id
        with pytest.raises(ForbiddenError):
            await oauth_service.revoke_token(other_user, token_id)
