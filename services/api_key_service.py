"""
API key registry — issuance, validation, usage accounting and revocation.

Validation never raises: every outcome is an ApiKeyValidation. Unknown
prefixes and hash mismatches share one error (``invalid_api_key``) so a
caller cannot probe which prefixes exist; the remaining reasons are distinct
to help legitimate clients debug.

The validate-and-increment path folds the ``is_active`` check into the
counter update, so a revoke that lands between the read and the write is
reported as revoked and nothing is counted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pymongo.errors import DuplicateKeyError

from config import ApiKeySettings
from errors import ConflictError, NotFoundError, ValidationError
from infrastructure.rate_limit_store import RedisRateLimitStore
from repositories.api_key_repository import ApiKeyRepository, ApiRequestLogRepository
from repositories.audit_log_repository import AuditLogRepository
from repositories.base import to_object_id
from schemas.dto.requests.api_key import CreateApiKeyRequest, UpdateApiKeyRequest
from schemas.dto.responses.api_key import (
    ApiKeyCreatedResult,
    ApiKeyResponse,
    ApiKeyStats,
    ApiKeyValidation,
)
from schemas.models.api_key import ApiKeyDoc, ApiRequestLogDoc
from services.access import AccessPolicy, Caller
from shared.clock import Clock, SystemClock
from shared.crypto import digests_match, generate_api_key, hash_token, split_api_key
from shared.datetime_utils import to_timestamp
from shared.generators import generate_public_id
from shared.logging import get_logger, should_sample
from shared.rate_limit import RateLimit, RateLimitDecision, evaluate
from shared.validators import ip_allowed

log = get_logger(__name__)

ERROR_INVALID_KEY = "invalid_api_key"
ERROR_KEY_REVOKED = "api_key_revoked"
ERROR_KEY_EXPIRED = "api_key_expired"
ERROR_IP_NOT_ALLOWED = "ip_not_allowed"

# Compared against when the prefix is unknown so both failure paths do the same work
_UNKNOWN_KEY_HASH = hash_token("unknown-api-key")

_PREFIX_ATTEMPTS = 3
_RECENT_LOG_WINDOW = 100


@dataclass(frozen=True)
class ApiKeyAuthentication:
    """Result of authenticating a raw key: validation plus the rate-limit decision."""

    validation: ApiKeyValidation
    decision: Optional[RateLimitDecision] = None

    @property
    def allowed(self) -> bool:
        if not self.validation.valid:
            return False
        return self.decision is None or self.decision.allowed


class ApiKeyService:
    def __init__(
        self,
        keys: ApiKeyRepository,
        request_logs: ApiRequestLogRepository,
        audit: AuditLogRepository,
        rate_limits: RedisRateLimitStore,
        settings: ApiKeySettings,
        *,
        clock: Optional[Clock] = None,
        policy: Optional[AccessPolicy] = None,
    ) -> None:
        self._keys = keys
        self._request_logs = request_logs
        self._audit = audit
        self._rate_limits = rate_limits
        self._settings = settings
        self._clock = clock or SystemClock()
        self._policy = policy or AccessPolicy()

    def _default_rate_limit(self) -> RateLimit:
        return RateLimit(
            per_minute=self._settings.api_key_default_per_minute,
            per_hour=self._settings.api_key_default_per_hour,
            per_day=self._settings.api_key_default_per_day,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def create(
        self, caller: Caller, request: CreateApiKeyRequest
    ) -> ApiKeyCreatedResult:
        """Issue a new key. The plaintext token is in the result and nowhere else."""
        now = self._clock.now()
        if request.expires_at is not None and request.expires_at <= now:
            raise ValidationError("expires_at must be in the future", field="expires_at")

        limit = self._settings.api_key_max_active_per_user
        if await self._keys.count_active_for_owner(caller.user_id) >= limit:
            raise ValidationError(f"maximum of {limit} active API keys reached")

        rate_limit = request.rate_limit or self._default_rate_limit()

        for attempt in range(1, _PREFIX_ATTEMPTS + 1):
            secret = generate_api_key()
            doc = ApiKeyDoc(
                public_id=generate_public_id("key_"),
                owner_id=caller.user_id,
                name=request.name,
                description=request.description,
                key_prefix=secret.prefix,
                key_hash=secret.hash,
                scopes=request.scopes,
                rate_limit=rate_limit,
                allowed_ips=request.allowed_ips,
                expires_at=request.expires_at,
                created_at=now,
                created_by=caller.user_id,
                updated_at=now,
                updated_by=caller.user_id,
            )
            try:
                await self._keys.insert(doc)
                break
            except DuplicateKeyError:
                log.warning("api_key_prefix_collision", attempt=attempt)
        else:
            raise ConflictError("could not allocate a unique API key, please retry")

        await self._audit.record(
            user_id=caller.user_id,
            action="api_key.create",
            entity_type="api_key",
            entity_id=doc.public_id,
            entity_title=doc.name,
            description=f'Created API key "{doc.name}" with {len(doc.scopes)} scope(s)',
            metadata={
                "scopes": doc.scopes,
                "rate_limit": rate_limit.model_dump(),
                "expires_at": to_timestamp(doc.expires_at),
            },
            now=now,
        )
        log.info(
            "api_key_created",
            key_id=str(doc.id),
            key_prefix=doc.key_prefix,
            owner_id=caller.user_id,
            scope_count=len(doc.scopes),
        )
        return ApiKeyCreatedResult.from_doc_with_token(doc, secret.plaintext)

    async def update(
        self, caller: Caller, key_ref: str, request: UpdateApiKeyRequest
    ) -> ApiKeyResponse:
        key = await self._get_owned(caller, key_ref)
        now = self._clock.now()

        changes = request.changes()
        for name in ("name", "scopes", "rate_limit"):
            if name in changes and changes[name] is None:
                del changes[name]
        if not changes:
            return ApiKeyResponse.from_doc(key)
        expires_at = changes.get("expires_at")
        if expires_at is not None and expires_at <= now:
            raise ValidationError("expires_at must be in the future", field="expires_at")
        if changes.get("allowed_ips") == []:
            changes["allowed_ips"] = None

        fields = sorted(changes)
        changes.update(updated_at=now, updated_by=caller.user_id)
        updated = await self._keys.update_fields(key.id, changes)
        if updated is None:
            raise NotFoundError("API key not found")

        await self._audit.record(
            user_id=caller.user_id,
            action="api_key.update",
            entity_type="api_key",
            entity_id=key.public_id,
            entity_title=updated.name,
            description=f'Updated API key "{updated.name}"',
            metadata={"fields": fields},
            now=now,
        )
        log.info("api_key_updated", key_id=str(key.id), fields=fields)
        return ApiKeyResponse.from_doc(updated)

    async def revoke(
        self, caller: Caller, key_ref: str, reason: Optional[str] = None
    ) -> ApiKeyResponse:
        """Permanently deactivate a key.

        Revoking an already revoked key succeeds without changing anything:
        the first ``revoked_at`` and ``revoked_reason`` are kept.
        """
        key = await self._get_owned(caller, key_ref, include_deleted=True)
        now = self._clock.now()
        reason = reason.strip() if reason and reason.strip() else None

        revoked = await self._keys.revoke(
            key.id, now=now, reason=reason, revoked_by=caller.user_id
        )
        if revoked is None:
            log.info("api_key_revoke_noop", key_id=str(key.id))
            current = await self._keys.get(key.id, include_deleted=True)
            return ApiKeyResponse.from_doc(current or key)

        await self._audit.record(
            user_id=caller.user_id,
            action="api_key.revoke",
            entity_type="api_key",
            entity_id=key.public_id,
            entity_title=key.name,
            description=f'Revoked API key "{key.name}"' + (f": {reason}" if reason else ""),
            metadata={"key_prefix": key.key_prefix, "reason": reason},
            now=now,
        )
        log.info("api_key_revoked", key_id=str(key.id), key_prefix=key.key_prefix)
        return ApiKeyResponse.from_doc(revoked)

    # ── Validation ───────────────────────────────────────────────────────────

    async def _check(
        self, prefix: str, presented_hash: str, client_ip: Optional[str]
    ) -> tuple[Optional[ApiKeyDoc], Optional[ApiKeyValidation]]:
        key = await self._keys.find_by_prefix(prefix.strip())
        stored_hash = key.key_hash if key is not None else _UNKNOWN_KEY_HASH
        if not digests_match(presented_hash.strip(), stored_hash) or key is None:
            return None, ApiKeyValidation(valid=False, error=ERROR_INVALID_KEY)
        if not key.is_active:
            return key, ApiKeyValidation(valid=False, error=ERROR_KEY_REVOKED)
        if key.expires_at is not None and key.expires_at <= self._clock.now():
            return key, ApiKeyValidation(valid=False, error=ERROR_KEY_EXPIRED)
        if key.allowed_ips and not ip_allowed(client_ip, key.allowed_ips):
            return key, ApiKeyValidation(valid=False, error=ERROR_IP_NOT_ALLOWED)
        return key, None

    @staticmethod
    def _valid(key: ApiKeyDoc) -> ApiKeyValidation:
        return ApiKeyValidation(
            valid=True,
            key_id=str(key.id),
            owner_id=key.owner_id,
            scopes=key.scopes,
            rate_limit=key.rate_limit,
        )

    async def validate(
        self, prefix: str, presented_hash: str, client_ip: Optional[str] = None
    ) -> ApiKeyValidation:
        """Read-only check of a presented (prefix, SHA-256 hash) pair."""
        key, failure = await self._check(prefix, presented_hash, client_ip)
        if failure is not None:
            return failure
        return self._valid(key)

    async def validate_and_increment(
        self, prefix: str, presented_hash: str, client_ip: Optional[str] = None
    ) -> ApiKeyValidation:
        """Validate and, on success, count the use in the same conditional write."""
        key, failure = await self._check(prefix, presented_hash, client_ip)
        if failure is not None:
            return failure

        used = await self._keys.record_use(key.id, self._clock.now())
        if used is None:
            # Revoked between the read and the write
            return ApiKeyValidation(valid=False, error=ERROR_KEY_REVOKED)

        if should_sample("api_key_validated"):
            log.info(
                "api_key_validated",
                key_id=str(used.id),
                key_prefix=used.key_prefix,
                total_requests=used.total_requests,
            )
        return self._valid(used)

    async def authenticate(
        self, raw_key: str, client_ip: Optional[str] = None
    ) -> ApiKeyAuthentication:
        """Full request-time check of a raw ``sk_…`` key, including rate limits.

        A valid key is counted as used before the rate limit is consulted, so
        a denied request still bumps ``total_requests``; the request logger
        then records its 429, which also counts toward ``total_errors``.
        """
        parts = split_api_key(raw_key)
        if parts is None:
            return ApiKeyAuthentication(
                ApiKeyValidation(valid=False, error=ERROR_INVALID_KEY)
            )

        prefix, presented_hash = parts
        validation = await self.validate_and_increment(prefix, presented_hash, client_ip)
        if not validation.valid:
            log.info("api_key_rejected", key_prefix=prefix, error_code=validation.error)
            return ApiKeyAuthentication(validation)

        now = self._clock.now()
        counts = await self._rate_limits.hit(f"apikey:{validation.key_id}", now)
        decision = evaluate(validation.rate_limit, counts, now)
        if not decision.allowed:
            log.warning(
                "api_key_rate_limited",
                key_id=validation.key_id,
                window=decision.window,
                limit=decision.limit,
            )
        return ApiKeyAuthentication(validation, decision)

    # ── Usage accounting ─────────────────────────────────────────────────────

    async def log_request(
        self,
        key_id: str,
        *,
        method: str,
        path: str,
        status_code: int,
        response_time_ms: float,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Append a request log row; responses with status >= 400 count as key errors."""
        key = await self._keys.get(key_id, include_deleted=True)
        if key is None:
            log.warning("api_request_log_unknown_key", key_id=key_id)
            return
        await self._request_logs.insert(
            ApiRequestLogDoc(
                api_key_id=key.id,
                owner_id=key.owner_id,
                method=method.strip().upper(),
                path=path.strip(),
                status_code=status_code,
                response_time_ms=max(response_time_ms, 0.0),
                ip_address=ip_address,
                user_agent=user_agent,
                timestamp=self._clock.now(),
            )
        )
        if status_code >= 400:
            await self._keys.record_error(key.id)

    # ── Queries ──────────────────────────────────────────────────────────────

    async def _get_owned(
        self, caller: Caller, key_ref: str, *, include_deleted: bool = False
    ) -> ApiKeyDoc:
        key: Optional[ApiKeyDoc]
        if to_object_id(key_ref) is not None:
            key = await self._keys.get(key_ref, include_deleted=include_deleted)
        else:
            key = await self._keys.find_by_public_id(key_ref)
        if key is None:
            raise NotFoundError("API key not found")
        self._policy.ensure_can_manage(caller, key.owner_id, "API key")
        return key

    async def get(self, caller: Caller, key_ref: str) -> ApiKeyResponse:
        return ApiKeyResponse.from_doc(await self._get_owned(caller, key_ref))

    async def get_by_public_id(self, caller: Caller, public_id: str) -> ApiKeyResponse:
        key = await self._keys.find_by_public_id(public_id)
        if key is None:
            raise NotFoundError("API key not found")
        self._policy.ensure_can_manage(caller, key.owner_id, "API key")
        return ApiKeyResponse.from_doc(key)

    async def list_for_owner(self, caller: Caller) -> list[ApiKeyResponse]:
        keys = await self._keys.list_for_owner(caller.user_id)
        return [ApiKeyResponse.from_doc(k) for k in keys]

    async def stats(self, caller: Caller, key_ref: str) -> ApiKeyStats:
        key = await self._get_owned(caller, key_ref)
        recent = await self._request_logs.latest(key.id, _RECENT_LOG_WINDOW)
        successful = sum(1 for entry in recent if entry.status_code < 400)
        average = (
            sum(entry.response_time_ms for entry in recent) / len(recent) if recent else None
        )
        return ApiKeyStats(
            key_id=str(key.id),
            is_active=key.is_active,
            total_requests=key.total_requests,
            total_errors=key.total_errors,
            recent_successful_requests=successful,
            recent_failed_requests=len(recent) - successful,
            average_response_time_ms=average,
            last_used_at=to_timestamp(key.last_used_at),
            expires_at=to_timestamp(key.expires_at),
        )
