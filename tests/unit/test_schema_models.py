"""Unit tests for MongoDB document models."""

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from schemas.models.api_key import ApiKeyDoc, ApiRequestLogDoc
from schemas.models.audit_log import AuditLogDoc
from schemas.models.base import AuditedDoc, MongoBaseModel, PyObjectId
from schemas.models.integration import ExternalIntegrationDoc, IntegrationEventDoc
from schemas.models.oauth import OAuthAppDoc, OAuthTokenDoc
from schemas.models.webhook import RetryConfig, WebhookDeliveryDoc, WebhookDoc
from shared.rate_limit import RateLimit


# ── Helpers ───────────────────────────────────────────────────────────────────

def now():
    return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def oid():
    return ObjectId()


def _api_key(**overrides) -> ApiKeyDoc:
    data = {
        "owner_id": "user-1",
        "name": "CI deploy key",
        "key_prefix": "AbCdEfGh",
        "key_hash": "0" * 64,
    }
    data.update(overrides)
    return ApiKeyDoc.model_validate(data)


def _webhook(**overrides) -> WebhookDoc:
    data = {
        "owner_id": "user-1",
        "name": "Orders hook",
        "url": "https://hooks.example.com/in",
        "secret": "whsec_x",
        "events": ["url.created"],
    }
    data.update(overrides)
    return WebhookDoc.model_validate(data)


# ── PyObjectId ────────────────────────────────────────────────────────────────

class TestPyObjectId:
    def test_accepts_objectid_instance(self):
        o = oid()
        assert PyObjectId._validate(o) == o

    def test_accepts_valid_string(self):
        s = str(oid())
        result = PyObjectId._validate(s)
        assert isinstance(result, ObjectId)
        assert str(result) == s

    def test_rejects_invalid_string(self):
        with pytest.raises(ValueError):
            PyObjectId._validate("not-an-objectid")

    def test_rejects_none(self):
        with pytest.raises((ValueError, TypeError)):
            PyObjectId._validate(None)

    def test_serialises_as_string_in_json_mode(self):
        o = oid()
        doc = _api_key(_id=o)
        assert doc.model_dump(mode="json")["id"] == str(o)


# ── MongoBaseModel / AuditedDoc ───────────────────────────────────────────────

class TestMongoBaseModel:
    def test_from_mongo_returns_none_for_none(self):
        assert MongoBaseModel.from_mongo(None) is None

    def test_id_alias(self):
        o = oid()
        m = MongoBaseModel.model_validate({"_id": o})
        assert m.id == o

    def test_to_mongo_drops_none_id(self):
        assert "_id" not in MongoBaseModel().to_mongo()

    def test_to_mongo_keeps_set_id(self):
        o = oid()
        d = MongoBaseModel.model_validate({"_id": o}).to_mongo()
        assert d["_id"] == o


class TestAuditedDoc:
    def test_naive_datetimes_become_utc(self):
        doc = AuditedDoc.model_validate(
            {"owner_id": "user-1", "created_at": datetime(2026, 1, 1, 12, 0)}
        )
        assert doc.created_at == now()
        assert doc.created_at.tzinfo is not None

    def test_is_deleted(self):
        assert AuditedDoc(owner_id="u").is_deleted is False
        assert AuditedDoc(owner_id="u", deleted_at=now()).is_deleted is True

    def test_owner_required(self):
        with pytest.raises(ValidationError):
            AuditedDoc.model_validate({})


# ── API keys ──────────────────────────────────────────────────────────────────

class TestApiKeyDoc:
    def test_defaults(self):
        doc = _api_key()
        assert doc.is_active is True
        assert doc.rate_limit == RateLimit()
        assert doc.total_requests == 0
        assert doc.allowed_ips is None

    def test_round_trip_keeps_nested_rate_limit(self):
        doc = _api_key(rate_limit={"per_minute": 5, "per_hour": 50, "per_day": 500})
        raw = doc.to_mongo()
        assert raw["rate_limit"] == {"per_minute": 5, "per_hour": 50, "per_day": 500}
        assert ApiKeyDoc.from_mongo({**raw, "_id": oid()}).rate_limit.per_minute == 5

    def test_negative_counter_rejected(self):
        with pytest.raises(ValidationError):
            _api_key(total_requests=-1)


class TestApiRequestLogDoc:
    def test_string_key_id_coerced(self):
        key_id = oid()
        doc = ApiRequestLogDoc.model_validate(
            {
                "api_key_id": str(key_id),
                "owner_id": "user-1",
                "method": "GET",
                "path": "/v1/things",
                "status_code": 200,
                "timestamp": now(),
            }
        )
        assert doc.api_key_id == key_id


# ── OAuth ─────────────────────────────────────────────────────────────────────

class TestOAuthDocs:
    def test_app_defaults(self):
        app = OAuthAppDoc.model_validate(
            {
                "owner_id": "user-1",
                "name": "Reporting app",
                "client_id": "cid_x",
                "client_secret_hash": "0" * 64,
                "redirect_uris": ["https://app.example.com/cb"],
            }
        )
        assert app.is_active is True
        assert app.is_verified is False
        assert app.total_tokens == 0

    def test_unknown_grant_type_rejected(self):
        with pytest.raises(ValidationError):
            OAuthAppDoc.model_validate(
                {
                    "owner_id": "user-1",
                    "name": "Reporting app",
                    "client_id": "cid_x",
                    "client_secret_hash": "0" * 64,
                    "redirect_uris": [],
                    "grant_types": ["password"],
                }
            )

    @pytest.mark.parametrize("token_type", ["code", "Bearer"])
    def test_token_types(self, token_type):
        token = OAuthTokenDoc.model_validate(
            {
                "owner_id": "user-1",
                "app_id": oid(),
                "user_id": "user-1",
                "token_type": token_type,
                "access_token_hash": "0" * 64,
                "expires_at": now(),
            }
        )
        assert token.is_revoked is False
        assert token.usage_count == 0

    def test_unknown_token_type_rejected(self):
        with pytest.raises(ValidationError):
            OAuthTokenDoc.model_validate(
                {
                    "owner_id": "user-1",
                    "app_id": oid(),
                    "user_id": "user-1",
                    "token_type": "mac",
                    "access_token_hash": "0" * 64,
                    "expires_at": now(),
                }
            )


# ── Webhooks ──────────────────────────────────────────────────────────────────

class TestRetryConfig:
    def test_defaults(self):
        config = RetryConfig()
        assert config.enabled is True
        assert config.max_attempts == 3
        assert config.backoff_multiplier == 2.0
        assert config.initial_delay_ms == 1000
        assert config.schedule_ms is None

    @pytest.mark.parametrize(
        "overrides",
        [{"max_attempts": 0}, {"max_attempts": 11}, {"backoff_multiplier": 0.5}, {"initial_delay_ms": -1}],
    )
    def test_bounds(self, overrides):
        with pytest.raises(ValidationError):
            RetryConfig(**overrides)


class TestWebhookDoc:
    def test_defaults(self):
        webhook = _webhook()
        assert webhook.method == "POST"
        assert webhook.timeout_ms == 10000
        assert webhook.retry_config == RetryConfig()
        assert webhook.is_active is True

    def test_average_response_time(self):
        assert _webhook().average_response_time_ms is None
        webhook = _webhook(successful_deliveries=4, total_response_time_ms=100.0)
        assert webhook.average_response_time_ms == 25.0

    def test_method_restricted(self):
        with pytest.raises(ValidationError):
            _webhook(method="GET")


class TestWebhookDeliveryDoc:
    def _delivery(self, **overrides) -> WebhookDeliveryDoc:
        data = {
            "webhook_id": oid(),
            "owner_id": "user-1",
            "event": "url.created",
            "payload": '{"a":1}',
            "url": "https://hooks.example.com/in",
        }
        data.update(overrides)
        return WebhookDeliveryDoc.model_validate(data)

    def test_new_delivery_is_pending_first_attempt(self):
        delivery = self._delivery()
        assert delivery.status == "pending"
        assert delivery.attempt_number == 1
        assert delivery.claim_token is None

    @pytest.mark.parametrize(
        "status, terminal",
        [("pending", False), ("retrying", False), ("delivered", True), ("failed", True)],
    )
    def test_is_terminal(self, status, terminal):
        assert self._delivery(status=status).is_terminal is terminal

    def test_attempt_number_starts_at_one(self):
        with pytest.raises(ValidationError):
            self._delivery(attempt_number=0)


# ── Integrations / audit ──────────────────────────────────────────────────────

class TestIntegrationDocs:
    def test_integration_defaults(self):
        integration = ExternalIntegrationDoc.model_validate(
            {"owner_id": "user-1", "name": "Zapier orders", "provider": "zapier", "type": "automation"}
        )
        assert integration.status == "disconnected"
        assert integration.is_connected is False
        assert integration.config == {}

    def test_event_direction_restricted(self):
        with pytest.raises(ValidationError):
            IntegrationEventDoc.model_validate(
                {
                    "integration_id": oid(),
                    "event_type": "zap.triggered",
                    "direction": "sideways",
                    "status": "success",
                    "timestamp": now(),
                }
            )


def test_audit_log_round_trip():
    entry = AuditLogDoc(
        user_id="user-1",
        action="api_key.create",
        entity_type="api_key",
        entity_id="key_abc",
        description="Created API key",
        created_at=now(),
    )
    raw = entry.to_mongo()
    assert "_id" not in raw
    assert AuditLogDoc.from_mongo({**raw, "_id": oid()}).action == "api_key.create"
