"""
Integration tests for the HTTP surface.

The app is assembled the way create_app does it (error handlers, request
logging middleware, all routers) over the in-memory database, with a fake
webhook transport and a mocked Redis pipeline for rate limits.
"""

import time
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from config import AppSettings, DatabaseSettings, JWTSettings, WebhookSettings
from errors import register_error_handlers
from infrastructure.webhook.protocol import TransportResponse
from repositories.indexes import ensure_indexes
from routes.api_key_routes import router as api_key_router
from routes.integration_routes import router as integration_router
from routes.oauth_routes import router as oauth_router
from routes.oauth_routes import token_router as oauth_token_router
from routes.webhook_routes import router as webhook_router
from services.container import build_services
from shared.log_context import setup_logging_middleware

JWT_SECRET = "integration-tests-signing-secret-0123456789"
REDIRECT = "https://client.example.com/callback"


def _settings() -> AppSettings:
    return AppSettings(
        db=DatabaseSettings(mongodb_uri="mongodb://localhost:27017/"),
        jwt=JWTSettings(jwt_secret=JWT_SECRET),
        webhooks=WebhookSettings(webhook_sweeper_enabled=False),
    )


def _access_token(user_id: str = "user-1", **claims) -> str:
    now = int(time.time())
    payload = {
        "sub": user_id,
        "aud": "integrations.api",
        "iss": "integrations",
        "iat": now,
        "exp": now + 900,
        **claims,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def _auth(user_id: str = "user-1") -> dict:
    return {"Authorization": f"Bearer {_access_token(user_id)}"}


def _redis_counting(count: int) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[count, True, count, True, count, True])
    redis = MagicMock()
    redis.pipeline.return_value = pipe
    return redis


@pytest.fixture
def transport():
    fake = AsyncMock()
    fake.send.return_value = TransportResponse(status_code=200, body="ok")
    return fake


@pytest.fixture
def redis_client():
    return _redis_counting(1)


@pytest.fixture
def client(mongo_database, transport, redis_client):
    settings = _settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await ensure_indexes(mongo_database)
        app.state.db = mongo_database
        app.state.redis = redis_client
        app.state.settings = settings
        app.state.sweeper = None
        app.state.services = build_services(
            mongo_database, settings, transport=transport, redis_client=redis_client
        )
        yield

    app = FastAPI(lifespan=lifespan)
    setup_logging_middleware(app)
    register_error_handlers(app)
    for router in (
        api_key_router,
        oauth_router,
        oauth_token_router,
        webhook_router,
        integration_router,
    ):
        app.include_router(router)

    with TestClient(app) as test_client:
        yield test_client


def _create_key(client, **overrides) -> dict:
    body = {"name": "CI key", "scopes": ["links:read"]}
    body.update(overrides)
    resp = client.post("/api/v1/keys", json=body, headers=_auth())
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Caller authentication ─────────────────────────────────────────────────────


class TestCallerAuth:
    def test_missing_token(self, client):
        resp = client.get("/api/v1/keys")
        assert resp.status_code == 401
        assert resp.json()["code"] == "authentication_error"

    def test_wrong_audience(self, client):
        token = _access_token(aud="someone-else")
        resp = client.get("/api/v1/keys", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_expired_token(self, client):
        token = _access_token(exp=int(time.time()) - 10)
        resp = client.get("/api/v1/keys", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "access token has expired"

    def test_request_id_is_echoed(self, client):
        resp = client.get("/api/v1/keys", headers={**_auth(), "X-Request-ID": "req_abc"})
        assert resp.headers["X-Request-ID"] == "req_abc"

    def test_request_id_is_generated(self, client):
        resp = client.get("/api/v1/keys", headers=_auth())
        assert resp.headers["X-Request-ID"].startswith("req_")


# ── API keys ──────────────────────────────────────────────────────────────────


class TestApiKeyRoutes:
    def test_create_returns_token_once(self, client):
        created = _create_key(client)
        assert created["token"].startswith("sk_")

        listed = client.get("/api/v1/keys", headers=_auth()).json()["keys"]
        assert len(listed) == 1
        assert "token" not in listed[0]
        assert listed[0]["key_prefix"] == created["key_prefix"]

    def test_validation_error_shape(self, client):
        resp = client.post(
            "/api/v1/keys", json={"name": "ab", "scopes": ["links:read"]}, headers=_auth()
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "validation_error"
        assert body["field"] == "name"
        assert body["details"]

    def test_unknown_update_field_rejected(self, client):
        created = _create_key(client)
        resp = client.patch(
            f"/api/v1/keys/{created['id']}", json={"key_hash": "x"}, headers=_auth()
        )
        assert resp.status_code == 400

    def test_other_user_gets_forbidden(self, client):
        created = _create_key(client)
        resp = client.get(f"/api/v1/keys/{created['id']}", headers=_auth("user-2"))
        assert resp.status_code == 403

    def test_verify_with_rate_limit_headers(self, client):
        created = _create_key(client)

        resp = client.get("/api/v1/keys/verify", headers={"X-API-Key": created["token"]})

        assert resp.status_code == 200
        body = resp.json()
        assert body["valid"] is True
        assert body["keyId"] == created["key_id"]
        assert body["rateLimit"]["per_minute"] == 60
        assert resp.headers["X-RateLimit-Limit"] == "60"
        assert resp.headers["X-RateLimit-Remaining"] == "59"
        assert "X-RateLimit-Reset" in resp.headers

    def test_verify_accepts_bearer_key(self, client):
        created = _create_key(client)
        resp = client.get(
            "/api/v1/keys/verify", headers={"Authorization": f"Bearer {created['token']}"}
        )
        assert resp.status_code == 200

    def test_invalid_key(self, client):
        resp = client.get("/api/v1/keys/verify", headers={"X-API-Key": "sk_notarealkey123"})
        assert resp.status_code == 401
        assert resp.json()["details"] == {"reason": "invalid_api_key"}

    def test_revoked_key(self, client):
        created = _create_key(client)
        revoke = client.post(
            f"/api/v1/keys/{created['id']}/revoke", json={"reason": "rotated"}, headers=_auth()
        )
        assert revoke.status_code == 200
        assert revoke.json()["is_active"] is False

        resp = client.get("/api/v1/keys/verify", headers={"X-API-Key": created["token"]})
        assert resp.status_code == 401
        assert resp.json()["details"] == {"reason": "api_key_revoked"}

    def test_rate_limited(self, client, redis_client):
        created = _create_key(
            client, rate_limit={"per_minute": 1, "per_hour": 10, "per_day": 100}
        )
        redis_client.pipeline.return_value.execute.return_value = [2, True, 2, True, 2, True]

        resp = client.get("/api/v1/keys/verify", headers={"X-API-Key": created["token"]})

        assert resp.status_code == 429
        assert resp.json()["code"] == "rate_limit_exceeded"
        assert resp.headers["X-RateLimit-Limit"] == "1"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_stats(self, client):
        created = _create_key(client)
        client.get("/api/v1/keys/verify", headers={"X-API-Key": created["token"]})

        stats = client.get(f"/api/v1/keys/{created['id']}/stats", headers=_auth()).json()
        assert stats["total_requests"] == 1
        assert stats["is_active"] is True
        assert stats["recent_successful_requests"] == 1
        assert stats["recent_failed_requests"] == 0

    def test_rate_limited_request_counts_as_error(self, client, redis_client):
        created = _create_key(client)
        redis_client.pipeline.return_value.execute.return_value = [61, True, 61, True, 61, True]
        client.get("/api/v1/keys/verify", headers={"X-API-Key": created["token"]})

        stats = client.get(f"/api/v1/keys/{created['id']}/stats", headers=_auth()).json()
        assert stats["total_requests"] == 1
        assert stats["total_errors"] == 1
        assert stats["recent_failed_requests"] == 1


# ── OAuth ─────────────────────────────────────────────────────────────────────


def _register_app(client) -> dict:
    resp = client.post(
        "/api/v1/oauth/apps",
        json={"name": "Dashboard", "redirect_uris": [REDIRECT], "scopes": ["links:read"]},
        headers=_auth(),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _authorize(client, app: dict) -> str:
    resp = client.post(
        "/api/v1/oauth/authorize",
        json={"app_id": app["id"], "redirect_uri": REDIRECT, "scopes": ["links:read"]},
        headers=_auth(),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["code"]


class TestOAuthRoutes:
    def test_code_exchange(self, client):
        app = _register_app(client)
        code = _authorize(client, app)
        exchange = {
            "grant_type": "authorization_code",
            "client_id": app["client_id"],
            "client_secret": app["client_secret"],
            "code": code,
            "redirect_uri": REDIRECT,
        }

        first = client.post("/oauth/token", json=exchange)
        second = client.post("/oauth/token", json=exchange)

        assert first.status_code == 200
        assert first.headers["Cache-Control"] == "no-store"
        tokens = first.json()
        assert tokens["tokenType"] == "Bearer"
        assert tokens["accessToken"]
        assert tokens["refreshToken"]
        assert second.status_code == 400
        assert second.json()["error"] == "invalid_grant"

        validation = client.post("/oauth/validate", json={"token": tokens["accessToken"]})
        assert validation.json()["valid"] is True
        assert validation.json()["userId"] == "user-1"

    def test_bad_client_secret_is_401(self, client):
        app = _register_app(client)
        resp = client.post(
            "/oauth/token",
            json={
                "grant_type": "client_credentials",
                "client_id": app["client_id"],
                "client_secret": "wrong",
            },
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_client"

    def test_unregistered_redirect_on_authorize(self, client):
        app = _register_app(client)
        resp = client.post(
            "/api/v1/oauth/authorize",
            json={
                "app_id": app["id"],
                "redirect_uri": "https://evil.example.com/",
                "scopes": ["links:read"],
            },
            headers=_auth(),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_redirect_uri"

    def test_public_client_lookup_hides_secret(self, client):
        app = _register_app(client)
        resp = client.get(f"/api/v1/oauth/clients/{app['client_id']}")
        assert resp.status_code == 200
        assert "client_secret" not in resp.json()

    def test_delete_app(self, client):
        app = _register_app(client)
        resp = client.delete(f"/api/v1/oauth/apps/{app['id']}", headers=_auth())
        assert resp.json() == {"success": True, "message": "OAuth application deleted"}
        assert client.get(f"/api/v1/oauth/apps/{app['id']}", headers=_auth()).status_code == 404


# ── Webhooks & integrations ───────────────────────────────────────────────────


class TestWebhookRoutes:
    def test_create_dispatch_and_list_deliveries(self, client, transport):
        created = client.post(
            "/api/v1/webhooks",
            json={"name": "Orders", "url": "https://hooks.example.com/in", "events": ["url.created"]},
            headers=_auth(),
        )
        assert created.status_code == 201
        webhook = created.json()
        assert webhook["secret"]

        dispatched = client.post(
            "/api/v1/webhooks/events",
            json={"event": "url.created", "payload": {"code": "abc"}},
            headers=_auth(),
        )
        assert dispatched.status_code == 202
        assert len(dispatched.json()["delivery_ids"]) == 1
        assert transport.send.await_count == 1

        deliveries = client.get(
            f"/api/v1/webhooks/{webhook['id']}/deliveries?status=delivered", headers=_auth()
        ).json()["deliveries"]
        assert [d["status"] for d in deliveries] == ["delivered"]

    def test_invalid_url(self, client):
        resp = client.post(
            "/api/v1/webhooks",
            json={"name": "Orders", "url": "ftp://example.com", "events": ["url.created"]},
            headers=_auth(),
        )
        assert resp.status_code == 400
        assert resp.json()["field"] == "url"

    def test_invalid_delivery_status_filter(self, client):
        created = client.post(
            "/api/v1/webhooks",
            json={"name": "Orders", "url": "https://hooks.example.com/in", "events": ["a.b"]},
            headers=_auth(),
        ).json()
        resp = client.get(
            f"/api/v1/webhooks/{created['id']}/deliveries?status=lost", headers=_auth()
        )
        assert resp.status_code == 400


class TestIntegrationRoutes:
    def test_create_log_and_health(self, client):
        created = client.post(
            "/api/v1/integrations",
            json={"name": "Zapier orders", "provider": "zapier"},
            headers=_auth(),
        )
        assert created.status_code == 201
        integration = created.json()
        assert integration["status"] == "connected"

        logged = client.post(
            f"/api/v1/integrations/{integration['id']}/events",
            json={"event_type": "zap.triggered", "direction": "inbound", "status": "success"},
            headers=_auth(),
        )
        assert logged.status_code == 201

        health = client.get(
            f"/api/v1/integrations/{integration['id']}/health", headers=_auth()
        ).json()
        assert health["health_status"] == "healthy"
        assert health["total_events"] == 1

    def test_unknown_automation_provider(self, client):
        resp = client.post(
            "/api/v1/integrations",
            json={"name": "Mystery", "provider": "ifttt"},
            headers=_auth(),
        )
        assert resp.status_code == 400
