from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.core.errors import Conflict, Forbidden, NotFound, ProviderUnavailable, ValidationFailed
from signdesk.core.logging import get_logger
from signdesk.integrations.esignature import ProviderError, SignerSpec, SigningProvider
from signdesk.integrations.notifications import NotificationType
from signdesk.models.audit import AuditCategory
from signdesk.models.contract import Contract, ContractStatus
from signdesk.models.signature import (
    ACTIVE_REQUEST_STATUSES,
    TERMINAL_REQUEST_STATUSES,
    Signatory,
    SignatoryStatus,
    SignatureRequest,
    SignatureRequestStatus,
    SigningOrder,
)
from signdesk.models.user import User
from signdesk.schemas.signature import (
    AwaitingSignature,
    SignatoryInput,
    SignatoryRead,
    SignatureRequestRead,
    SignatureRequestSummary,
)
from signdesk.services.access_service import has_access
from signdesk.services.artifact_store import ArtifactStore
from signdesk.services.document_renderer import DocumentRenderer
from signdesk.services.notification_service import enqueue_notification
from signdesk.services.signature_state import (
    as_utc,
    load_request,
    record_audit,
    set_contract_status,
    transition_request,
    transition_signatory,
)

logger = get_logger(__name__)

MAX_SIGNATORIES = 10
MAX_MESSAGE_LENGTH = 1000
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(slots=True)
class SignedArtifact:
    content: bytes
    filename: str


def validate_signatories(signatories: Sequence[SignatoryInput], message: str | None) -> None:
    if not 1 <= len(signatories) <= MAX_SIGNATORIES:
        raise ValidationFailed(
            f"A signature request needs between 1 and {MAX_SIGNATORIES} signatories",
            field="signatories",
            details={"count": len(signatories)},
        )
    seen: dict[str, int] = {}
    for index, signatory in enumerate(signatories):
        if not signatory.name or not signatory.name.strip():
            raise ValidationFailed("Signatory name is required", field=f"signatories[{index}].name")
        email = (signatory.email or "").strip()
        if not EMAIL_PATTERN.match(email):
            raise ValidationFailed("Signatory email is not valid", field=f"signatories[{index}].email")
        key = email.lower()
        if key in seen:
            raise Conflict(
                "Each signatory must have a unique email address",
                details={"field": f"signatories[{index}].email", "duplicate_of": f"signatories[{seen[key]}].email"},
            )
        seen[key] = index
    if message is not None and len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationFailed(f"Message must be at most {MAX_MESSAGE_LENGTH} characters", field="message")


def _signatory_matches(signatory: Signatory, user: User) -> bool:
    return signatory.user_id == user.id or signatory.email.lower() == user.email.lower()


def build_request_view(request: SignatureRequest, viewer: User) -> SignatureRequestRead:
    """
    Role-scoped view: the initiator sees every signing link, a signatory only
    their own and only while it is still actionable.
    """
    if request.initiator_id == viewer.id:
        role = "initiator"
    elif any(_signatory_matches(signatory, viewer) for signatory in request.signatories):
        role = "signatory"
    else:
        raise Forbidden("You are not a participant in this signature request")

    signatories = []
    for signatory in request.signatories:
        item = SignatoryRead.model_validate(signatory)
        if role == "initiator":
            visible = True
        else:
            visible = _signatory_matches(signatory, viewer) and signatory.status is not SignatoryStatus.SIGNED
        if not visible:
            item.signing_url = None
            item.signing_token = None
        signatories.append(item)

    view = SignatureRequestRead.model_validate(request)
    view.viewer_role = role
    view.signatories = signatories
    return view


def build_summary(request: SignatureRequest) -> SignatureRequestSummary:
    return SignatureRequestSummary(
        id=request.id,
        contract_id=request.contract_id,
        initiator_id=request.initiator_id,
        status=request.status,
        signing_order=request.signing_order,
        expires_at=request.expires_at,
        completed_at=request.completed_at,
        created_at=request.created_at,
        total_signatories=len(request.signatories),
        signed_count=sum(1 for signatory in request.signatories if signatory.status is SignatoryStatus.SIGNED),
    )


class SignatureService:
    """Creates, cancels and reads signature requests on behalf of API callers."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        provider: SigningProvider,
        renderer: DocumentRenderer,
        store: ArtifactStore | None = None,
    ):
        self.session = session
        self.provider = provider
        self.renderer = renderer
        self.store = store

    async def create(
        self,
        *,
        contract_id: str,
        initiator_id: str,
        signatories: Sequence[SignatoryInput],
        signing_order: SigningOrder = SigningOrder.SEQUENTIAL,
        message: str | None = None,
        expires_at: datetime | None = None,
    ) -> SignatureRequest:
        validate_signatories(signatories, message)
        if expires_at is not None:
            expires_at = as_utc(expires_at)

        contract = await self.session.get(Contract, contract_id, populate_existing=True)
        if contract is None:
            raise NotFound("Contract not found", details={"contract_id": contract_id})
        if contract.owner_id != initiator_id:
            raise Forbidden("Only the contract owner can request signatures")
        if contract.status is ContractStatus.SIGNED:
            raise Conflict("Contract is already signed", details={"contract_status": contract.status.value})
        if await self._has_active_request(contract_id):
            raise Conflict("Contract already has an active signature request", details={"contract_id": contract_id})

        document = self.renderer.render(contract)
        specs = [
            SignerSpec(name=signatory.name.strip(), email=signatory.email.strip(), sequence_index=index)
            for index, signatory in enumerate(signatories, start=1)
        ]
        try:
            uploaded = await self.provider.upload_document(document.content, document.filename)
            registrations = await self.provider.create_signer_batch(uploaded.document_id, specs, expires_at)
        except ProviderError as exc:
            logger.warning(
                "signature_request.provider_failed",
                contract_id=contract_id,
                error_code=exc.error_code,
                transient=exc.transient,
            )
            raise ProviderUnavailable(
                f"Signing provider rejected the request: {exc.message}",
                retryable=exc.transient,
                details={"provider_error": exc.error_code},
            ) from exc

        if not await set_contract_status(
            self.session,
            contract_id,
            ContractStatus.PENDING_SIGNATURE,
            sources=(ContractStatus.DRAFT,),
        ):
            logger.warning(
                "signature_request.contract_claim_lost",
                contract_id=contract_id,
                provider_document_id=uploaded.document_id,
            )
            raise Conflict("Contract is no longer available for signing", details={"contract_id": contract_id})

        accounts = await self._accounts_by_email([spec.email for spec in specs])
        request = SignatureRequest(
            contract_id=contract_id,
            initiator_id=initiator_id,
            provider_document_id=uploaded.document_id,
            status=SignatureRequestStatus.PENDING,
            signing_order=signing_order,
            message=message,
            expires_at=expires_at,
        )
        registrations_by_index = {registration.sequence_index: registration for registration in registrations}
        for spec in specs:
            registration = registrations_by_index.get(spec.sequence_index)
            if registration is None:
                raise ProviderUnavailable(
                    "Signing provider did not register every signer",
                    retryable=False,
                    details={"sequence_index": spec.sequence_index},
                )
            actionable = signing_order is SigningOrder.PARALLEL or spec.sequence_index == 1
            request.signatories.append(
                Signatory(
                    provider_signer_id=registration.signer_id,
                    signing_token=registration.signing_token,
                    signing_url=registration.signing_url,
                    email=spec.email,
                    name=spec.name,
                    user_id=accounts.get(spec.email.lower()),
                    sequence_index=spec.sequence_index,
                    status=SignatoryStatus.PENDING if actionable else SignatoryStatus.WAITING,
                )
            )
        self.session.add(request)
        await self.session.flush()

        record_audit(
            self.session,
            action="signature_request.created",
            category=AuditCategory.SIGNATURE,
            signature_request_id=request.id,
            contract_id=contract_id,
            actor=initiator_id,
            details={"signatories": len(specs), "signing_order": signing_order.value},
        )
        for signatory in request.signatories:
            if signatory.status is SignatoryStatus.PENDING:
                await self._enqueue_invitation(request, signatory, contract.title)

        logger.info(
            "signature_request.created",
            signature_request_id=request.id,
            contract_id=contract_id,
            signatories=len(specs),
        )
        return request

    async def cancel(self, request_id: str, caller_id: str) -> SignatureRequest:
        request = await self._get_request(request_id)
        if request.initiator_id != caller_id:
            raise Forbidden("Only the initiator can cancel a signature request")
        if request.status in TERMINAL_REQUEST_STATUSES:
            raise Conflict(
                f"Cannot cancel a {request.status.value} signature request",
                details={"status": request.status.value},
            )

        result = await transition_request(self.session, request.id, SignatureRequestStatus.CANCELLED)
        if not result.succeeded:
            current = await load_request(self.session, request.id)
            status = current.status.value if current is not None else "unknown"
            raise Conflict(f"Cannot cancel a {status} signature request", details={"status": status})

        await set_contract_status(
            self.session,
            request.contract_id,
            ContractStatus.DRAFT,
            sources=(ContractStatus.PENDING_SIGNATURE,),
        )
        record_audit(
            self.session,
            action="signature_request.cancelled",
            category=AuditCategory.SIGNATURE,
            signature_request_id=request.id,
            contract_id=request.contract_id,
            actor=caller_id,
        )

        request = await load_request(self.session, request.id)
        contract = await self.session.get(Contract, request.contract_id)
        for signatory in request.signatories:
            if signatory.status is not SignatoryStatus.SIGNED:
                await enqueue_notification(
                    self.session,
                    notification_type=NotificationType.REQUEST_CANCELLED,
                    recipient_email=signatory.email,
                    recipient_name=signatory.name,
                    signature_request_id=request.id,
                    payload={"contract_title": contract.title if contract else None},
                )
        logger.info("signature_request.cancelled", signature_request_id=request.id, actor=caller_id)
        return request

    async def get(self, request_id: str, caller: User) -> SignatureRequestRead:
        request = await self._get_request(request_id)
        return build_request_view(request, caller)

    async def list_initiated(
        self,
        initiator_id: str,
        status: SignatureRequestStatus | None = None,
    ) -> list[SignatureRequest]:
        query = select(SignatureRequest).where(SignatureRequest.initiator_id == initiator_id)
        if status is not None:
            query = query.where(SignatureRequest.status == status)
        result = await self.session.execute(query.order_by(SignatureRequest.created_at.desc()))
        return list(result.scalars().all())

    async def list_for_signatory(
        self,
        user: User,
        status: SignatureRequestStatus | None = None,
    ) -> list[SignatureRequest]:
        participant = select(Signatory.signature_request_id).where(
            or_(Signatory.user_id == user.id, func.lower(Signatory.email) == user.email.lower())
        )
        query = select(SignatureRequest).where(SignatureRequest.id.in_(participant))
        if status is not None:
            query = query.where(SignatureRequest.status == status)
        result = await self.session.execute(query.order_by(SignatureRequest.created_at.desc()))
        return list(result.scalars().all())

    async def list_awaiting(self, user: User) -> list[AwaitingSignature]:
        result = await self.session.execute(
            select(Signatory, SignatureRequest)
            .join(SignatureRequest, Signatory.signature_request_id == SignatureRequest.id)
            .where(
                or_(Signatory.user_id == user.id, func.lower(Signatory.email) == user.email.lower()),
                Signatory.status == SignatoryStatus.PENDING,
                SignatureRequest.status.in_(ACTIVE_REQUEST_STATUSES),
            )
            .order_by(SignatureRequest.created_at)
        )
        return [
            AwaitingSignature(
                signature_request_id=request.id,
                contract_id=request.contract_id,
                signatory_id=signatory.id,
                sequence_index=signatory.sequence_index,
                signing_url=signatory.signing_url,
                message=request.message,
                expires_at=request.expires_at,
            )
            for signatory, request in result.all()
        ]

    async def resend_invitation(self, request_id: str, caller_id: str) -> list[Signatory]:
        request = await self._get_request(request_id)
        if request.initiator_id != caller_id:
            raise Forbidden("Only the initiator can resend invitations")
        if request.status not in ACTIVE_REQUEST_STATUSES:
            raise Conflict(
                f"Cannot remind signers of a {request.status.value} signature request",
                details={"status": request.status.value},
            )
        actionable = [signatory for signatory in request.signatories if signatory.status is SignatoryStatus.PENDING]
        if not actionable:
            actionable = await self._activate_next_waiting(request)
        if not actionable:
            raise Conflict("No signatory is currently awaiting signature", details={"status": request.status.value})

        contract = await self.session.get(Contract, request.contract_id)
        for signatory in actionable:
            await self._enqueue_invitation(request, signatory, contract.title if contract else None, reminder=True)
        logger.info("signature_request.reminded", signature_request_id=request.id, reminded=len(actionable))
        return actionable

    async def download_artifact(self, request_id: str, caller: User) -> SignedArtifact:
        request = await self._get_request(request_id)
        contract = await self.session.get(Contract, request.contract_id)
        allowed = (
            request.initiator_id == caller.id
            or (contract is not None and contract.owner_id == caller.id)
            or await has_access(self.session, caller.id, request.contract_id)
        )
        if not allowed:
            raise Forbidden("You do not have access to this signed document")
        if request.status is not SignatureRequestStatus.COMPLETED or not request.signed_artifact_path:
            raise Conflict(
                "Signed document is available once every party has signed",
                details={"status": request.status.value},
            )
        if self.store is None:
            raise NotFound("Signed document storage is not configured")
        content = await self.store.read(request.signed_artifact_path)
        title = contract.title if contract else "contract"
        return SignedArtifact(content=content, filename=f"{title}-signed.pdf")

    async def _activate_next_waiting(self, request: SignatureRequest) -> list[Signatory]:
        """
        Promote the lowest waiting signatory once everyone before it has signed.

        Covers a sequential request whose activation event was lost or arrived
        before the signature it depended on.
        """
        waiting = [signatory for signatory in request.signatories if signatory.status is SignatoryStatus.WAITING]
        if not waiting:
            return []
        candidate = min(waiting, key=lambda signatory: signatory.sequence_index)
        result = await transition_signatory(
            self.session,
            candidate,
            SignatoryStatus.PENDING,
            enforce_sequence=request.signing_order,
        )
        if not result.succeeded:
            return []
        record_audit(
            self.session,
            action="signatory.activated",
            category=AuditCategory.SIGNATURE,
            signature_request_id=request.id,
            contract_id=request.contract_id,
            actor=request.initiator_id,
            details={"signatory_id": candidate.id, "sequence_index": candidate.sequence_index},
        )
        logger.info(
            "signature_request.signatory_activated",
            signature_request_id=request.id,
            signatory_id=candidate.id,
            sequence_index=candidate.sequence_index,
        )
        return [candidate]

    async def _get_request(self, request_id: str) -> SignatureRequest:
        request = await load_request(self.session, request_id)
        if request is None:
            raise NotFound("Signature request not found", details={"signature_request_id": request_id})
        return request

    async def _has_active_request(self, contract_id: str) -> bool:
        result = await self.session.execute(
            select(SignatureRequest.id).where(
                SignatureRequest.contract_id == contract_id,
                SignatureRequest.status.in_(ACTIVE_REQUEST_STATUSES),
            )
        )
        return result.first() is not None

    async def _accounts_by_email(self, emails: list[str]) -> dict[str, str]:
        lowered = [email.lower() for email in emails]
        result = await self.session.execute(
            select(User.id, User.email).where(func.lower(User.email).in_(lowered))
        )
        return {email.lower(): user_id for user_id, email in result.all()}

    async def _enqueue_invitation(
        self,
        request: SignatureRequest,
        signatory: Signatory,
        contract_title: str | None,
        *,
        reminder: bool = False,
    ) -> None:
        await enqueue_notification(
            self.session,
            notification_type=NotificationType.SIGNER_INVITED,
            recipient_email=signatory.email,
            recipient_name=signatory.name,
            signature_request_id=request.id,
            payload={
                "contract_title": contract_title,
                "signing_url": signatory.signing_url,
                "message": request.message,
                "expires_at": request.expires_at.isoformat() if request.expires_at else None,
                "reminder": reminder,
            },
        )
