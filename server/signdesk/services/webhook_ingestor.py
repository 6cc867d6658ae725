"""
Inbound signing-provider webhooks.

Authenticates the raw body, decodes it into one of the known event shapes,
screens replays through the processed-event ledger and hands the event to
``SignatureEventHandlers``. Once authentication and parsing succeed the caller
always gets an acknowledgment; handler failures are logged and recorded, not
returned, so the provider does not redeliver in a loop.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.core.errors import ConfigurationError, MalformedPayload, Unauthenticated
from signdesk.core.logging import get_logger
from signdesk.integrations.notifications import Notifier
from signdesk.models.audit import AuditCategory
from signdesk.models.event import ProcessedEvent, ProcessedEventStatus
from signdesk.schemas.webhook import KNOWN_EVENT_TYPES, WebhookEvent, webhook_event_adapter
from signdesk.services.notification_service import discard_pending_notifications, dispatch_notifications
from signdesk.services.signature_state import record_audit
from signdesk.services.webhook_handlers import HandlerOutcome, SignatureEventHandlers

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="
LOCK_PREFIX = "signdesk:webhook:inflight:"
LOCK_TTL_SECONDS = 300


def compute_signature(secret: str, payload: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, payload: bytes, signature: str | None) -> bool:
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = compute_signature(secret, payload)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


@dataclass(slots=True)
class IngestResult:
    status: str
    event_type: str | None = None
    event_id: str | None = None
    signature_request_id: str | None = None
    detail: str | None = None


HandlerFactory = Callable[[AsyncSession], SignatureEventHandlers]


class WebhookIngestor:
    def __init__(
        self,
        *,
        secret: Optional[str],
        require_secret: bool,
        handler_factory: HandlerFactory,
        notifier: Notifier,
    ):
        if require_secret and not secret:
            raise ConfigurationError("A webhook secret is required in production")
        self.secret = secret
        self.require_secret = require_secret
        self.handler_factory = handler_factory
        self.notifier = notifier

    def authenticate(self, raw_payload: bytes, signature_header: str | None) -> None:
        if not self.secret:
            if self.require_secret:
                raise ConfigurationError("A webhook secret is required in production")
            logger.warning("webhook.signature.unverified", reason="no webhook secret configured")
            return
        if not verify_signature(self.secret, raw_payload, signature_header):
            logger.warning("webhook.signature.invalid", has_header=bool(signature_header))
            raise Unauthenticated("Invalid webhook signature")

    def parse(self, raw_payload: bytes, event_type_header: str | None) -> WebhookEvent | None:
        """Decode the body; returns None for event types this service does not know."""
        try:
            body = json.loads(raw_payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedPayload("Webhook body is not valid JSON") from exc
        if not isinstance(body, dict) or not isinstance(body.get("event"), str):
            raise MalformedPayload("Webhook body must be an object with an 'event' field", field="event")

        event_type = body["event"]
        if event_type_header and event_type_header != event_type:
            raise MalformedPayload(
                "Event type header does not match body",
                field="event",
                details={"header": event_type_header, "body": event_type},
            )
        if event_type not in KNOWN_EVENT_TYPES:
            logger.info("webhook.event.unknown", event_type=event_type)
            return None
        try:
            return webhook_event_adapter.validate_python(body)
        except ValidationError as exc:
            raise MalformedPayload(
                f"Webhook payload does not match {event_type}",
                field="data",
                details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc

    async def handle(
        self,
        session: AsyncSession,
        raw_payload: bytes,
        signature_header: str | None,
        event_type_header: str | None,
        *,
        redis_client: Redis | None = None,
    ) -> IngestResult:
        self.authenticate(raw_payload, signature_header)
        event = self.parse(raw_payload, event_type_header)
        if event is None:
            return IngestResult(status="ignored", event_type=event_type_header)

        event_id = event.id or hashlib.sha256(raw_payload).hexdigest()
        existing = await self._ledger_entry(session, event_id)
        if existing is not None and existing.status is ProcessedEventStatus.PROCESSED:
            logger.info("webhook.event.duplicate", event_id=event_id, event_type=event.event)
            return IngestResult(status="duplicate", event_type=event.event, event_id=event_id)
        if not await self._acquire_inflight_lock(redis_client, event_id):
            logger.info("webhook.event.inflight", event_id=event_id, event_type=event.event)
            return IngestResult(status="duplicate", event_type=event.event, event_id=event_id)

        try:
            outcome = await self.handler_factory(session).dispatch(event)
            self._record_ledger(session, existing, event_id, event.event, outcome)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            discard_pending_notifications(session)
            logger.info("webhook.event.duplicate", event_id=event_id, event_type=event.event, raced=True)
            return IngestResult(status="duplicate", event_type=event.event, event_id=event_id)
        except Exception as exc:
            await session.rollback()
            discard_pending_notifications(session)
            logger.error(
                "webhook.handler.failed",
                event_id=event_id,
                event_type=event.event,
                error=str(exc),
                exc_info=True,
            )
            await self._record_failure(session, event_id, event.event, exc)
            return IngestResult(status="failed", event_type=event.event, event_id=event_id, detail=str(exc))
        finally:
            await self._release_inflight_lock(redis_client, event_id)

        await dispatch_notifications(session, self.notifier)
        if outcome.deferred:
            status = "deferred"
        else:
            status = "processed" if outcome.applied else "noop"
        logger.info(
            f"webhook.event.{status}",
            event_id=event_id,
            event_type=event.event,
            applied=outcome.applied,
            reason=outcome.reason,
            signature_request_id=outcome.signature_request_id,
        )
        return IngestResult(
            status=status,
            event_type=event.event,
            event_id=event_id,
            signature_request_id=outcome.signature_request_id,
            detail=outcome.reason,
        )

    async def _ledger_entry(self, session: AsyncSession, event_id: str) -> ProcessedEvent | None:
        result = await session.execute(
            select(ProcessedEvent)
            .where(ProcessedEvent.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    def _record_ledger(
        self,
        session: AsyncSession,
        existing: ProcessedEvent | None,
        event_id: str,
        event_type: str,
        outcome: HandlerOutcome,
    ) -> None:
        status = ProcessedEventStatus.DEFERRED if outcome.deferred else ProcessedEventStatus.PROCESSED
        last_error = outcome.reason if outcome.deferred else None
        if existing is None:
            session.add(
                ProcessedEvent(
                    event_id=event_id,
                    event_type=event_type,
                    status=status,
                    last_error=last_error,
                    signature_request_id=outcome.signature_request_id,
                    signatory_id=outcome.signatory_id,
                )
            )
            return
        existing.status = status
        existing.attempts += 1
        existing.last_error = last_error
        existing.signature_request_id = outcome.signature_request_id
        existing.signatory_id = outcome.signatory_id

    async def _record_failure(self, session: AsyncSession, event_id: str, event_type: str, exc: Exception) -> None:
        try:
            entry = await self._ledger_entry(session, event_id)
            if entry is None:
                session.add(
                    ProcessedEvent(
                        event_id=event_id,
                        event_type=event_type,
                        status=ProcessedEventStatus.FAILED,
                        last_error=str(exc),
                    )
                )
            elif entry.status is not ProcessedEventStatus.PROCESSED:
                entry.status = ProcessedEventStatus.FAILED
                entry.attempts += 1
                entry.last_error = str(exc)
            record_audit(
                session,
                action="webhook.handler.failed",
                category=AuditCategory.WEBHOOK,
                details={"event_id": event_id, "event_type": event_type, "error": str(exc)},
                critical=True,
            )
            await session.commit()
        except Exception as ledger_exc:  # pragma: no cover - ledger write is best effort once the handler failed
            await session.rollback()
            logger.error("webhook.ledger.failed", event_id=event_id, error=str(ledger_exc))

    async def _acquire_inflight_lock(self, redis_client: Redis | None, event_id: str) -> bool:
        if redis_client is None:
            return True
        key = f"{LOCK_PREFIX}{event_id}"
        try:
            async with redis_client.pipeline(transaction=True) as pipe:
                pipe.setnx(key, 1)
                pipe.expire(key, LOCK_TTL_SECONDS)
                created, _ = await pipe.execute()
                return bool(created)
        except RedisError as exc:
            logger.warning("redis.unavailable", error=str(exc))
            return True

    async def _release_inflight_lock(self, redis_client: Redis | None, event_id: str) -> None:
        if redis_client is None:
            return
        try:
            await redis_client.delete(f"{LOCK_PREFIX}{event_id}")
        except RedisError as exc:
            logger.warning("redis.unavailable", error=str(exc))
