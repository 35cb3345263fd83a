"""
Webhook dispatcher — endpoint registrations and the delivery state machine.

One WebhookDeliveryDoc tracks one delivery *sequence*:

    pending  ──▶ delivered | retrying | failed
    retrying ──▶ delivered | retrying | failed

``delivered`` and ``failed`` are terminal. Every attempt is made by whoever
holds the row's ``claim_token``; the outcome is written with a filter on that
token, so two workers can never both advance the same row, and attempt N+1
cannot start before attempt N's outcome is stored (the row is only due again
once ``next_retry_at`` is set by that outcome).

Transport failures never leave this module as exceptions: they become
``error`` on the delivery row and drive the retry schedule.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

import httpx

from config import WebhookSettings
from errors import ConflictError, NotFoundError, ValidationError
from infrastructure.webhook.protocol import WebhookTransport
from repositories.audit_log_repository import AuditLogRepository
from repositories.base import to_object_id
from repositories.webhook_repository import WebhookDeliveryRepository, WebhookRepository
from schemas.dto.requests.webhook import CreateWebhookRequest, UpdateWebhookRequest
from schemas.dto.responses.webhook import (
    DeliveryResponse,
    WebhookCreatedResult,
    WebhookResponse,
    WebhookStats,
)
from schemas.models.webhook import (
    DELIVERY_DELIVERED,
    DELIVERY_FAILED,
    DELIVERY_PENDING,
    DELIVERY_RETRYING,
    TEST_EVENT,
    DeliveryError,
    RetryConfig,
    WebhookDeliveryDoc,
    WebhookDoc,
)
from services.access import AccessPolicy, Caller
from services.integration_service import IntegrationService
from shared.clock import Clock, SystemClock
from shared.datetime_utils import to_timestamp
from shared.generators import generate_public_id, generate_webhook_secret
from shared.logging import get_logger, log_with_context, should_sample
from shared.signatures import (
    DELIVERY_ID_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    sign_payload,
)

log = get_logger(__name__)

ERROR_TIMEOUT = "webhook_timeout"
ERROR_DELIVERY_FAILED = "webhook_delivery_failed"
ERROR_DEACTIVATED = "webhook_deactivated"

# Set by the dispatcher; a custom header with one of these names is dropped
_RESERVED_HEADERS = frozenset(
    name.lower()
    for name in ("Content-Type", SIGNATURE_HEADER, EVENT_HEADER, DELIVERY_ID_HEADER)
)

_REQUIRED_WEBHOOK_FIELDS = (
    "name",
    "url",
    "events",
    "method",
    "timeout_ms",
    "retry_config",
    "is_active",
)


def compute_retry_delay_ms(retry_config: RetryConfig, failed_attempt: int) -> int:
    """Delay before the attempt that follows failed attempt *failed_attempt* (1-based).

    A configured ``schedule_ms`` wins, clamped to its last entry; otherwise
    ``initial_delay_ms * backoff_multiplier ** (failed_attempt - 1)``.
    """
    failed_attempt = max(failed_attempt, 1)
    if retry_config.schedule_ms:
        schedule = retry_config.schedule_ms
        return schedule[min(failed_attempt, len(schedule)) - 1]
    return int(
        retry_config.initial_delay_ms * retry_config.backoff_multiplier ** (failed_attempt - 1)
    )


def serialize_payload(payload: Any) -> str:
    """The exact JSON body sent (and signed) for every attempt of a delivery."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)


def new_claim_token() -> str:
    return uuid.uuid4().hex


class WebhookService:
    def __init__(
        self,
        webhooks: WebhookRepository,
        deliveries: WebhookDeliveryRepository,
        audit: AuditLogRepository,
        transport: WebhookTransport,
        settings: WebhookSettings,
        *,
        integrations: Optional[IntegrationService] = None,
        clock: Optional[Clock] = None,
        policy: Optional[AccessPolicy] = None,
    ) -> None:
        self._webhooks = webhooks
        self._deliveries = deliveries
        self._audit = audit
        self._transport = transport
        self._settings = settings
        self._integrations = integrations
        self._clock = clock or SystemClock()
        self._policy = policy or AccessPolicy()

    def _default_retry_config(self) -> RetryConfig:
        if self._settings.webhook_default_retry_schedule == "fixed":
            return RetryConfig.fixed_schedule()
        return RetryConfig(
            max_attempts=self._settings.webhook_default_max_attempts,
            backoff_multiplier=self._settings.webhook_default_backoff_multiplier,
            initial_delay_ms=self._settings.webhook_default_initial_delay_ms,
        )

    async def _get_owned(self, caller: Caller, webhook_ref: str) -> WebhookDoc:
        webhook: Optional[WebhookDoc]
        if to_object_id(webhook_ref) is not None:
            webhook = await self._webhooks.get(webhook_ref)
        else:
            webhook = await self._webhooks.find_by_public_id(webhook_ref)
        if webhook is None:
            raise NotFoundError("webhook not found")
        self._policy.ensure_can_manage(caller, webhook.owner_id, "webhook")
        return webhook

    async def _audit_action(
        self,
        caller: Caller,
        action: str,
        webhook: WebhookDoc,
        description: str,
        metadata: Optional[dict] = None,
    ) -> None:
        await self._audit.record(
            user_id=caller.user_id,
            action=action,
            entity_type="webhook",
            entity_id=webhook.public_id,
            entity_title=webhook.name,
            description=description,
            metadata=metadata,
            now=self._clock.now(),
        )

    # ── Registration ─────────────────────────────────────────────────────────

    async def create(self, caller: Caller, request: CreateWebhookRequest) -> WebhookCreatedResult:
        integration_id = None
        if request.integration_id:
            if self._integrations is None:
                raise ValidationError("integrations are not available", field="integration_id")
            integration = await self._integrations.resolve_owned(caller, request.integration_id)
            integration_id = integration.id

        now = self._clock.now()
        secret = request.secret or generate_webhook_secret()
        doc = WebhookDoc(
            public_id=generate_public_id("whk_"),
            owner_id=caller.user_id,
            name=request.name,
            description=request.description,
            url=request.url,
            secret=secret,
            events=request.events,
            method=request.method,
            headers=request.headers,
            timeout_ms=request.timeout_ms or self._settings.webhook_default_timeout_ms,
            retry_config=request.retry_config or self._default_retry_config(),
            integration_id=integration_id,
            created_at=now,
            created_by=caller.user_id,
            updated_at=now,
            updated_by=caller.user_id,
        )
        await self._webhooks.insert(doc)

        await self._audit_action(
            caller,
            "webhook.create",
            doc,
            f'Created webhook "{doc.name}" for {len(doc.events)} event(s)',
            metadata={"url": doc.url, "events": doc.events},
        )
        log.info(
            "webhook_created",
            webhook_id=str(doc.id),
            owner_id=caller.user_id,
            event_count=len(doc.events),
        )
        return WebhookCreatedResult(**WebhookResponse.from_doc(doc).model_dump(), secret=secret)

    async def update(
        self, caller: Caller, webhook_ref: str, request: UpdateWebhookRequest
    ) -> WebhookResponse:
        webhook = await self._get_owned(caller, webhook_ref)
        changes = request.changes()
        for name in _REQUIRED_WEBHOOK_FIELDS:
            if name in changes and changes[name] is None:
                del changes[name]
        if not changes:
            return WebhookResponse.from_doc(webhook)

        now = self._clock.now()
        fields = sorted(changes)
        changes.update(updated_at=now, updated_by=caller.user_id)
        updated = await self._webhooks.update_fields(webhook.id, changes)
        if updated is None:
            raise NotFoundError("webhook not found")

        await self._audit_action(
            caller,
            "webhook.update",
            updated,
            f'Updated webhook "{updated.name}"',
            metadata={"fields": fields},
        )
        log.info("webhook_updated", webhook_id=str(webhook.id), fields=fields)
        return WebhookResponse.from_doc(updated)

    async def delete(self, caller: Caller, webhook_ref: str) -> None:
        """Soft-delete. Queued retries for it are failed by the next sweep."""
        webhook = await self._get_owned(caller, webhook_ref)
        now = self._clock.now()
        deleted = await self._webhooks.mark_deleted(
            webhook.id, now=now, deleted_by=caller.user_id, extra={"is_active": False}
        )
        if deleted is None:
            raise NotFoundError("webhook not found")
        await self._audit_action(caller, "webhook.delete", webhook, f'Deleted webhook "{webhook.name}"')
        log.info("webhook_deleted", webhook_id=str(webhook.id))

    async def get(self, caller: Caller, webhook_ref: str) -> WebhookResponse:
        return WebhookResponse.from_doc(await self._get_owned(caller, webhook_ref))

    async def list_for_owner(self, caller: Caller) -> list[WebhookResponse]:
        webhooks = await self._webhooks.list_for_owner(caller.user_id)
        return [WebhookResponse.from_doc(w) for w in webhooks]

    async def list_deliveries(
        self,
        caller: Caller,
        webhook_ref: str,
        *,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[DeliveryResponse]:
        webhook = await self._get_owned(caller, webhook_ref)
        rows = await self._deliveries.list_for_webhook(
            webhook.id, status=status, limit=min(max(limit, 1), 100)
        )
        return [DeliveryResponse.from_doc(d) for d in rows]

    async def stats(self, caller: Caller, webhook_ref: str) -> WebhookStats:
        webhook = await self._get_owned(caller, webhook_ref)
        by_status = await self._deliveries.count_by_status(webhook.id)
        completed = webhook.successful_deliveries + webhook.failed_deliveries
        return WebhookStats(
            webhook_id=str(webhook.id),
            total_deliveries=webhook.total_deliveries,
            successful_deliveries=webhook.successful_deliveries,
            failed_deliveries=webhook.failed_deliveries,
            pending_deliveries=by_status.get(DELIVERY_PENDING, 0),
            retrying_deliveries=by_status.get(DELIVERY_RETRYING, 0),
            success_rate=(
                round(webhook.successful_deliveries / completed * 100, 2) if completed else 0.0
            ),
            average_response_time_ms=webhook.average_response_time_ms,
            last_success_at=to_timestamp(webhook.last_success_at),
            last_failure_at=to_timestamp(webhook.last_failure_at),
        )

    # ── Delivery ─────────────────────────────────────────────────────────────

    def _lease_until(self, now: datetime, webhook: Optional[WebhookDoc] = None) -> datetime:
        lease = self._settings.webhook_claim_lease_seconds
        if webhook is not None:
            # Never shorter than the attempt itself
            lease = max(lease, webhook.timeout_ms / 1000 + 5)
        return now + timedelta(seconds=lease)

    def _build_headers(self, webhook: WebhookDoc, delivery: WebhookDeliveryDoc) -> dict[str, str]:
        headers = {
            name: value
            for name, value in (webhook.headers or {}).items()
            if name.lower() not in _RESERVED_HEADERS
        }
        headers.update(
            {
                "Content-Type": "application/json",
                SIGNATURE_HEADER: sign_payload(webhook.secret, delivery.payload),
                EVENT_HEADER: delivery.event,
                DELIVERY_ID_HEADER: str(delivery.id),
            }
        )
        return headers

    async def _start_sequence(self, webhook: WebhookDoc, event: str, body: str) -> WebhookDeliveryDoc:
        """Insert a pending row, claimed by this caller, and make the first attempt."""
        now = self._clock.now()
        claim_token = new_claim_token()
        delivery = WebhookDeliveryDoc(
            webhook_id=webhook.id,
            owner_id=webhook.owner_id,
            event=event,
            payload=body,
            url=webhook.url,
            method=webhook.method,
            attempt_number=1,
            status=DELIVERY_PENDING,
            # Lease: if this process dies mid-attempt the sweep picks the row up
            next_retry_at=self._lease_until(now, webhook),
            claim_token=claim_token,
            created_at=now,
            updated_at=now,
        )
        await self._deliveries.insert(delivery)
        await self._webhooks.record_triggered(webhook.id, now)

        finalized = await self._attempt(webhook, delivery, claim_token)
        return finalized or delivery

    async def enqueue_delivery(
        self,
        webhook_id,
        event: str,
        payload: Any,
        *,
        webhook: Optional[WebhookDoc] = None,
    ) -> str:
        """Create a delivery for *event* and attempt it once before returning its id.

        The wait is bounded by the webhook's timeout; later attempts belong
        to the retry sweep.
        """
        if webhook is None:
            webhook = await self._webhooks.get(webhook_id)
        if webhook is None:
            raise NotFoundError("webhook not found")
        if not webhook.is_active:
            raise ValidationError("webhook is inactive")

        delivery = await self._start_sequence(webhook, event, serialize_payload(payload))
        return str(delivery.id)

    async def dispatch_event(self, owner_id: str, event: str, payload: Any) -> list[str]:
        """Fan *event* out to every active webhook of *owner_id* subscribed to it."""
        webhooks = await self._webhooks.list_subscribed(owner_id, event)
        if not webhooks:
            return []
        log.info(
            "webhook_event_dispatched", owner_id=owner_id, event=event, webhooks=len(webhooks)
        )
        results = await asyncio.gather(
            *(self.enqueue_delivery(w.id, event, payload, webhook=w) for w in webhooks),
            return_exceptions=True,
        )
        delivery_ids: list[str] = []
        for webhook, result in zip(webhooks, results):
            if isinstance(result, Exception):
                log.error(
                    "webhook_enqueue_failed",
                    webhook_id=str(webhook.id),
                    event=event,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                continue
            delivery_ids.append(result)
        return delivery_ids

    async def _attempt(
        self, webhook: WebhookDoc, delivery: WebhookDeliveryDoc, claim_token: str
    ) -> Optional[WebhookDeliveryDoc]:
        """Run one HTTP attempt for a claimed row and record its outcome.

        Returns the updated row, or None when the claim was lost meanwhile.
        """
        attempt_log = log_with_context(
            log,
            delivery_id=str(delivery.id),
            webhook_id=str(webhook.id),
            attempt=delivery.attempt_number,
        )
        headers = self._build_headers(webhook, delivery)
        timeout_seconds = webhook.timeout_ms / 1000

        status_code: Optional[int] = None
        response_body: Optional[str] = None
        error: Optional[DeliveryError] = None

        started = time.perf_counter()
        try:
            # Whole-attempt bound; the claim lease is sized from the same timeout
            response = await asyncio.wait_for(
                self._transport.send(
                    delivery.method,
                    delivery.url,
                    delivery.payload.encode("utf-8"),
                    headers,
                    timeout_seconds,
                ),
                timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            error = DeliveryError(
                message=f"request timed out after {webhook.timeout_ms} ms", code=ERROR_TIMEOUT
            )
        except httpx.HTTPError as exc:
            error = DeliveryError(
                message=str(exc) or exc.__class__.__name__, code=ERROR_DELIVERY_FAILED
            )
        except Exception as exc:
            attempt_log.exception("webhook_transport_error")
            error = DeliveryError(
                message=str(exc) or exc.__class__.__name__, code=ERROR_DELIVERY_FAILED
            )
        else:
            status_code = response.status_code
            response_body = response.body[: self._settings.webhook_response_body_max_chars]
            if not response.ok:
                error = DeliveryError(
                    message=f"endpoint responded with HTTP {status_code}",
                    code=ERROR_DELIVERY_FAILED,
                )
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        now = self._clock.now()
        outcome: dict[str, Any] = {
            "status_code": status_code,
            "response_body": response_body,
            "response_time_ms": elapsed_ms,
            "updated_at": now,
        }
        retry_config = webhook.retry_config
        bump_attempt = False

        if error is None:
            outcome.update(
                status=DELIVERY_DELIVERED, delivered_at=now, next_retry_at=None, error=None
            )
        elif retry_config.enabled and delivery.attempt_number < retry_config.max_attempts:
            delay_ms = compute_retry_delay_ms(retry_config, delivery.attempt_number)
            outcome.update(
                status=DELIVERY_RETRYING,
                next_retry_at=now + timedelta(milliseconds=delay_ms),
                error=error.model_dump(),
            )
            bump_attempt = True
        else:
            outcome.update(status=DELIVERY_FAILED, next_retry_at=None, error=error.model_dump())

        finalized = await self._deliveries.finalize_attempt(
            delivery.id, claim_token, outcome, bump_attempt=bump_attempt
        )
        if finalized is None:
            attempt_log.warning("webhook_claim_lost")
            return None

        if finalized.status == DELIVERY_DELIVERED:
            await self._webhooks.record_success(webhook.id, now, elapsed_ms)
        else:
            await self._webhooks.record_failure(
                webhook.id, now, terminal=finalized.status == DELIVERY_FAILED
            )

        attempt_log.info(
            "webhook_attempt_finished",
            status=finalized.status,
            status_code=status_code,
            response_time_ms=elapsed_ms,
            error_code=error.code if error else None,
        )

        if webhook.integration_id is not None and self._integrations is not None:
            await self._integrations.log_event(
                webhook.integration_id,
                event_type=delivery.event,
                direction="outbound",
                status="success" if error is None else "failed",
                request=delivery.payload,
                response=response_body,
                error=error.message if error else None,
                processing_time_ms=elapsed_ms,
            )
        return finalized

    # ── Retry sweep ──────────────────────────────────────────────────────────

    async def _resume(self, delivery: WebhookDeliveryDoc, claim_token: str) -> None:
        webhook = await self._webhooks.get(delivery.webhook_id)
        if webhook is None or not webhook.is_active:
            now = self._clock.now()
            await self._deliveries.finalize_attempt(
                delivery.id,
                claim_token,
                {
                    "status": DELIVERY_FAILED,
                    "next_retry_at": None,
                    "error": DeliveryError(
                        message="webhook deactivated", code=ERROR_DEACTIVATED
                    ).model_dump(),
                    "updated_at": now,
                },
            )
            log.info(
                "webhook_delivery_abandoned",
                delivery_id=str(delivery.id),
                webhook_id=str(delivery.webhook_id),
            )
            return

        # Re-stamp the lease for this webhook's timeout; nothing is sent without the claim
        held = await self._deliveries.extend_claim(
            delivery.id, claim_token, self._lease_until(self._clock.now(), webhook)
        )
        if held is None:
            log.warning(
                "webhook_claim_lost",
                delivery_id=str(delivery.id),
                webhook_id=str(webhook.id),
                attempt=delivery.attempt_number,
            )
            return
        await self._attempt(webhook, held, claim_token)

    async def process_due_deliveries(self, limit: Optional[int] = None) -> int:
        """Claim and run every delivery whose retry time has passed.

        At most ``webhook_sweep_max_concurrency`` workers run at once. Each
        worker claims one row at a time with a conditional write (which
        pushes ``next_retry_at`` to a lease deadline and stamps a fresh claim
        token) and attempts it straight away, so a lease never ticks while
        its row waits for a free slot. Returns the number of rows processed.
        """
        limit = limit or self._settings.webhook_sweep_batch_size
        slots = max(1, min(limit, self._settings.webhook_sweep_max_concurrency))
        processed = 0

        async def worker() -> None:
            nonlocal processed
            while processed < limit:
                processed += 1
                claim_token = new_claim_token()
                now = self._clock.now()
                delivery = await self._deliveries.claim_due(
                    now=now, lease_until=self._lease_until(now), claim_token=claim_token
                )
                if delivery is None:
                    processed -= 1
                    return
                try:
                    await self._resume(delivery, claim_token)
                except Exception as exc:
                    # The lease runs out and the row is picked up again later
                    log.error(
                        "webhook_retry_failed",
                        delivery_id=str(delivery.id),
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )

        await asyncio.gather(*(worker() for _ in range(slots)))

        if should_sample("webhook_sweep_tick"):
            log.info("webhook_sweep_tick", processed=processed)
        return processed

    # ── Operator actions ─────────────────────────────────────────────────────

    async def test_webhook(
        self, caller: Caller, webhook_ref: str, payload: Optional[dict] = None
    ) -> DeliveryResponse:
        """Send a synthetic ``test.webhook`` event through the normal pipeline."""
        webhook = await self._get_owned(caller, webhook_ref)
        if not webhook.is_active:
            raise ValidationError("webhook is inactive")
        if payload is None:
            payload = {
                "test": True,
                "webhook_id": webhook.public_id or str(webhook.id),
                "timestamp": self._clock.now().isoformat(),
            }

        delivery = await self._start_sequence(webhook, TEST_EVENT, serialize_payload(payload))
        await self._audit_action(
            caller, "webhook.test", webhook, f'Sent a test event to webhook "{webhook.name}"'
        )
        return DeliveryResponse.from_doc(delivery)

    async def redeliver(self, caller: Caller, delivery_id: str) -> DeliveryResponse:
        """Start a new delivery sequence with the event and body of an earlier one."""
        original = await self._deliveries.get(delivery_id)
        if original is None:
            raise NotFoundError("delivery not found")
        self._policy.ensure_can_manage(caller, original.owner_id, "delivery")
        if not original.is_terminal:
            raise ConflictError("delivery is still in progress")

        webhook = await self._webhooks.get(original.webhook_id)
        if webhook is None or not webhook.is_active:
            raise ValidationError("webhook is inactive or has been deleted")

        delivery = await self._start_sequence(webhook, original.event, original.payload)
        log.info(
            "webhook_redelivered",
            original_delivery_id=str(original.id),
            delivery_id=str(delivery.id),
        )
        return DeliveryResponse.from_doc(delivery)
