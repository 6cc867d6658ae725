from __future__ import annotations

import asyncio
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.core.errors import NotFound, ProviderUnavailable
from signdesk.core.logging import get_logger
from signdesk.integrations.esignature import ProviderError, SigningProvider
from signdesk.integrations.notifications import NotificationType
from signdesk.models.audit import AuditCategory
from signdesk.models.contract import Contract, ContractStatus
from signdesk.models.event import ProcessedEvent, ProcessedEventStatus
from signdesk.models.signature import (
    ACTIVE_REQUEST_STATUSES,
    Signatory,
    SignatoryStatus,
    SignatureRequest,
    SignatureRequestStatus,
)
from signdesk.models.user import User
from signdesk.schemas.webhook import (
    DocumentCompletedEvent,
    NextSignerReadyEvent,
    SignatureCompletedEvent,
    SignatureDeclinedEvent,
    WebhookEvent,
    WebhookEventType,
)
from signdesk.services.access_service import grant_access
from signdesk.services.artifact_store import ArtifactStore
from signdesk.services.notification_service import enqueue_notification
from signdesk.services.signature_state import (
    force_signatories_signed,
    load_request,
    record_audit,
    set_contract_status,
    transition_request,
    transition_signatory,
    utcnow,
)

logger = get_logger(__name__)


@dataclass(slots=True)
class HandlerOutcome:
    applied: bool
    signature_request_id: str | None = None
    reason: str | None = None
    signatory_id: str | None = None
    # the event arrived too early and must be applied again on redelivery
    deferred: bool = False


class SignatureEventHandlers:
    """
    One guarded state transition per provider event.

    Handlers flush but never commit; the ingestor owns the transaction so a
    failure anywhere rolls the whole event back.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        provider: SigningProvider,
        store: ArtifactStore,
        download_timeout_seconds: float = 30.0,
    ):
        self.session = session
        self.provider = provider
        self.store = store
        self.download_timeout_seconds = download_timeout_seconds

    async def dispatch(self, event: WebhookEvent) -> HandlerOutcome:
        if isinstance(event, SignatureCompletedEvent):
            return await self.on_signature_completed(event)
        if isinstance(event, NextSignerReadyEvent):
            return await self.on_next_signer_ready(event)
        if isinstance(event, DocumentCompletedEvent):
            return await self.on_document_completed(event)
        if isinstance(event, SignatureDeclinedEvent):
            return await self.on_signature_declined(event)
        raise TypeError(f"unhandled webhook event {type(event).__name__}")

    async def on_signature_completed(self, event: SignatureCompletedEvent) -> HandlerOutcome:
        signatory = await self._signatory_by_provider_id(event.data.signer_id)
        request_id = signatory.signature_request_id
        if signatory.status is SignatoryStatus.SIGNED:
            return HandlerOutcome(False, request_id, "duplicate", signatory_id=signatory.id)

        request = await load_request(self.session, request_id)
        if request.status in (SignatureRequestStatus.CANCELLED, SignatureRequestStatus.EXPIRED):
            logger.warning(
                "webhook.signature_completed.request_terminal",
                signature_request_id=request_id,
                status=request.status.value,
            )
            return HandlerOutcome(False, request_id, f"request {request.status.value}")

        result = await transition_signatory(
            self.session, signatory, SignatoryStatus.SIGNED, signed_at=event.data.completed_at
        )
        if not result.succeeded:
            return HandlerOutcome(False, request_id, result.reason)

        await transition_request(
            self.session,
            request_id,
            SignatureRequestStatus.IN_PROGRESS,
            sources=(SignatureRequestStatus.PENDING,),
        )
        record_audit(
            self.session,
            action="signatory.signed",
            category=AuditCategory.WEBHOOK,
            signature_request_id=request_id,
            contract_id=request.contract_id,
            details={"signatory_id": signatory.id, "sequence_index": signatory.sequence_index},
        )
        await self._replay_deferred_activations(request_id)

        request = await load_request(self.session, request_id)
        contract = await self.session.get(Contract, request.contract_id)
        title = contract.title if contract else None
        signed_count = sum(1 for item in request.signatories if item.status is SignatoryStatus.SIGNED)
        await enqueue_notification(
            self.session,
            notification_type=NotificationType.SIGNER_CONFIRMED,
            recipient_email=signatory.email,
            recipient_name=signatory.name,
            signature_request_id=request_id,
            payload={"contract_title": title},
        )
        initiator = await self.session.get(User, request.initiator_id)
        if initiator is not None:
            await enqueue_notification(
                self.session,
                notification_type=NotificationType.INITIATOR_PROGRESS,
                recipient_email=initiator.email,
                recipient_name=initiator.full_name,
                signature_request_id=request_id,
                payload={
                    "contract_title": title,
                    "signer_name": signatory.name,
                    "signed_count": signed_count,
                    "total": len(request.signatories),
                },
            )
        logger.info(
            "webhook.signature_completed.applied",
            signature_request_id=request_id,
            signatory_id=signatory.id,
            signed_count=signed_count,
        )
        return HandlerOutcome(True, request_id, signatory_id=signatory.id)

    async def on_next_signer_ready(self, event: NextSignerReadyEvent) -> HandlerOutcome:
        signatory = await self._signatory_by_provider_id(event.data.signer_id)
        request_id = signatory.signature_request_id
        if signatory.status in (SignatoryStatus.PENDING, SignatoryStatus.SIGNED):
            return HandlerOutcome(False, request_id, "duplicate", signatory_id=signatory.id)

        request = await load_request(self.session, request_id)
        if request.status not in ACTIVE_REQUEST_STATUSES:
            return HandlerOutcome(False, request_id, f"request {request.status.value}", signatory_id=signatory.id)

        if not await self._activate(request, signatory):
            logger.warning(
                "webhook.next_signer_ready.out_of_order",
                signature_request_id=request_id,
                signatory_id=signatory.id,
                sequence_index=signatory.sequence_index,
            )
            return HandlerOutcome(False, request_id, "out_of_order", signatory_id=signatory.id, deferred=True)
        return HandlerOutcome(True, request_id, signatory_id=signatory.id)

    async def _activate(self, request: SignatureRequest, signatory: Signatory) -> bool:
        result = await transition_signatory(
            self.session,
            signatory,
            SignatoryStatus.PENDING,
            enforce_sequence=request.signing_order,
        )
        if not result.succeeded:
            return False

        contract = await self.session.get(Contract, request.contract_id)
        await enqueue_notification(
            self.session,
            notification_type=NotificationType.SIGNER_INVITED,
            recipient_email=signatory.email,
            recipient_name=signatory.name,
            signature_request_id=request.id,
            payload={
                "contract_title": contract.title if contract else None,
                "signing_url": signatory.signing_url,
                "message": request.message,
                "expires_at": request.expires_at.isoformat() if request.expires_at else None,
            },
        )
        logger.info(
            "webhook.next_signer_ready.applied",
            signature_request_id=request.id,
            signatory_id=signatory.id,
            sequence_index=signatory.sequence_index,
        )
        return True

    async def _replay_deferred_activations(self, request_id: str) -> int:
        """
        Re-apply ``signature.next_signer_ready`` events that arrived before the
        signature they depended on. Entries whose signatory has moved on are
        closed; the rest stay deferred until a later signature unblocks them.
        """
        result = await self.session.execute(
            select(ProcessedEvent, Signatory)
            .join(Signatory, ProcessedEvent.signatory_id == Signatory.id)
            .where(
                ProcessedEvent.signature_request_id == request_id,
                ProcessedEvent.status == ProcessedEventStatus.DEFERRED,
                ProcessedEvent.event_type == WebhookEventType.NEXT_SIGNER_READY.value,
            )
            .order_by(Signatory.sequence_index)
            .execution_options(populate_existing=True)
        )
        deferred = result.all()
        if not deferred:
            return 0

        request = await load_request(self.session, request_id)
        activated = 0
        for entry, signatory in deferred:
            if signatory.status is SignatoryStatus.WAITING:
                if not await self._activate(request, signatory):
                    continue
                activated += 1
            entry.status = ProcessedEventStatus.PROCESSED
            entry.last_error = None
        if activated:
            logger.info("webhook.next_signer_ready.replayed", signature_request_id=request_id, activated=activated)
        return activated

    async def on_document_completed(self, event: DocumentCompletedEvent) -> HandlerOutcome:
        result = await self.session.execute(
            select(SignatureRequest).where(SignatureRequest.provider_document_id == event.data.document_id)
            .execution_options(populate_existing=True)
        )
        request = result.scalars().first()
        if request is None:
            raise NotFound("No signature request for provider document", details={"document_id": event.data.document_id})
        request_id = request.id
        if request.status is SignatureRequestStatus.COMPLETED:
            return HandlerOutcome(False, request_id, "duplicate")
        if request.status not in ACTIVE_REQUEST_STATUSES:
            logger.warning(
                "webhook.document_completed.request_terminal",
                signature_request_id=request_id,
                status=request.status.value,
            )
            return HandlerOutcome(False, request_id, f"request {request.status.value}")

        contract = await self.session.get(Contract, request.contract_id)
        title = contract.title if contract else "contract"
        content = await self._download_artifact(request.provider_document_id)
        location = await self.store.store(content, request.contract_id, title, request_id=request_id)

        completed_at = event.data.completed_at
        transition = await transition_request(
            self.session,
            request_id,
            SignatureRequestStatus.COMPLETED,
            completed_at=completed_at,
            signed_artifact_path=location,
        )
        if not transition.succeeded:
            current = await load_request(self.session, request_id)
            if current.status is SignatureRequestStatus.COMPLETED:
                return HandlerOutcome(False, request_id, "completed concurrently")
            # cancelled or expired while the artifact was downloading
            await self.store.delete(location)
            logger.warning(
                "webhook.document_completed.request_terminal",
                signature_request_id=request_id,
                status=current.status.value,
                discarded_location=location,
            )
            return HandlerOutcome(False, request_id, f"request {current.status.value}")

        forced = await force_signatories_signed(self.session, request_id, completed_at)
        await set_contract_status(
            self.session,
            request.contract_id,
            ContractStatus.SIGNED,
            sources=(ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE),
            signed_artifact_path=location,
            signed_at=completed_at,
        )
        record_audit(
            self.session,
            action="signature_request.completed",
            category=AuditCategory.WEBHOOK,
            signature_request_id=request_id,
            contract_id=request.contract_id,
            details={"location": location, "forced_signatories": forced},
        )

        request = await load_request(self.session, request_id)
        initiator = await self.session.get(User, request.initiator_id)
        recipients: dict[str, str | None] = {}
        if initiator is not None:
            recipients[initiator.email.lower()] = initiator.full_name
        for signatory in request.signatories:
            recipients.setdefault(signatory.email.lower(), signatory.name)
        for email, name in recipients.items():
            await enqueue_notification(
                self.session,
                notification_type=NotificationType.REQUEST_COMPLETED,
                recipient_email=email,
                recipient_name=name,
                signature_request_id=request_id,
                payload={"contract_title": title},
            )

        granted = 0
        for signatory in request.signatories:
            if signatory.user_id and signatory.user_id != request.initiator_id:
                if await grant_access(self.session, user_id=signatory.user_id, contract_id=request.contract_id):
                    granted += 1
        logger.info(
            "webhook.document_completed.applied",
            signature_request_id=request_id,
            location=location,
            access_granted=granted,
            notified=len(recipients),
        )
        return HandlerOutcome(True, request_id)

    async def on_signature_declined(self, event: SignatureDeclinedEvent) -> HandlerOutcome:
        signatory = await self._signatory_by_provider_id(event.data.signer_id)
        request_id = signatory.signature_request_id
        if signatory.status in (SignatoryStatus.DECLINED, SignatoryStatus.SIGNED):
            return HandlerOutcome(False, request_id, "duplicate")

        request = await load_request(self.session, request_id)
        if request.status not in ACTIVE_REQUEST_STATUSES:
            return HandlerOutcome(False, request_id, f"request {request.status.value}")

        result = await transition_signatory(
            self.session,
            signatory,
            SignatoryStatus.DECLINED,
            declined_at=event.data.declined_at or utcnow(),
            decline_reason=event.data.reason,
        )
        if not result.succeeded:
            return HandlerOutcome(False, request_id, result.reason)

        record_audit(
            self.session,
            action="signatory.declined",
            category=AuditCategory.WEBHOOK,
            signature_request_id=request_id,
            contract_id=request.contract_id,
            details={"signatory_id": signatory.id, "reason": event.data.reason},
            critical=True,
        )
        initiator = await self.session.get(User, request.initiator_id)
        contract = await self.session.get(Contract, request.contract_id)
        if initiator is not None:
            await enqueue_notification(
                self.session,
                notification_type=NotificationType.SIGNER_DECLINED,
                recipient_email=initiator.email,
                recipient_name=initiator.full_name,
                signature_request_id=request_id,
                payload={
                    "contract_title": contract.title if contract else None,
                    "signer_name": signatory.name,
                    "reason": event.data.reason,
                },
            )
        logger.warning("webhook.signature_declined.applied", signature_request_id=request_id, signatory_id=signatory.id)
        return HandlerOutcome(True, request_id, signatory_id=signatory.id)

    async def _signatory_by_provider_id(self, signer_id: str) -> Signatory:
        result = await self.session.execute(
            select(Signatory)
            .where(Signatory.provider_signer_id == signer_id)
            .execution_options(populate_existing=True)
        )
        signatory = result.scalars().first()
        if signatory is None:
            raise NotFound("No signatory for provider signer", details={"signer_id": signer_id})
        return signatory

    async def _download_artifact(self, document_id: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self.provider.download_signed_document(document_id),
                timeout=self.download_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(
                "Timed out downloading the signed document",
                retryable=True,
                details={"document_id": document_id},
            ) from exc
        except ProviderError as exc:
            raise ProviderUnavailable(
                f"Could not download the signed document: {exc.message}",
                retryable=exc.transient,
                details={"document_id": document_id, "provider_error": exc.error_code},
            ) from exc
