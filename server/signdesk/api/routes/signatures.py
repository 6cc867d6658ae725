from typing import Literal
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.api.dependencies.auth import get_current_user
from signdesk.api.dependencies.database import get_db
from signdesk.api.dependencies.services import get_notifier, get_signature_service
from signdesk.integrations.notifications import Notifier
from signdesk.models.signature import SignatureRequestStatus
from signdesk.models.user import User
from signdesk.schemas.signature import (
    AwaitingSignature,
    ReminderResponse,
    SignatureRequestCollection,
    SignatureRequestCreate,
    SignatureRequestRead,
)
from signdesk.services.document_renderer import document_filename
from signdesk.services.notification_service import dispatch_notifications
from signdesk.services.signature_service import SignatureService, build_summary


router = APIRouter(prefix="/signature-requests", tags=["signature-requests"])


def attachment_disposition(filename: str) -> str:
    """ASCII fallback name plus the RFC 5987 UTF-8 form, so any contract title is a valid header."""
    stem = filename[:-4] if filename.lower().endswith(".pdf") else filename
    return f"attachment; filename=\"{document_filename(stem)}\"; filename*=UTF-8''{quote(filename, safe='')}"


@router.post("", response_model=SignatureRequestRead, status_code=status.HTTP_201_CREATED)
async def create_signature_request_endpoint(
    payload: SignatureRequestCreate,
    session: AsyncSession = Depends(get_db),
    service: SignatureService = Depends(get_signature_service),
    notifier: Notifier = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
) -> SignatureRequestRead:
    request = await service.create(
        contract_id=payload.contract_id,
        initiator_id=current_user.id,
        signatories=payload.signatories,
        signing_order=payload.signing_order,
        message=payload.message,
        expires_at=payload.expires_at,
    )
    await session.commit()
    await dispatch_notifications(session, notifier)
    return await service.get(request.id, current_user)


@router.get("", response_model=SignatureRequestCollection)
async def list_signature_requests_endpoint(
    role: Literal["initiator", "signatory"] = Query(default="initiator"),
    request_status: SignatureRequestStatus | None = Query(default=None, alias="status"),
    service: SignatureService = Depends(get_signature_service),
    current_user: User = Depends(get_current_user),
) -> SignatureRequestCollection:
    if role == "initiator":
        items = await service.list_initiated(current_user.id, request_status)
    else:
        items = await service.list_for_signatory(current_user, request_status)
    return SignatureRequestCollection(items=[build_summary(item) for item in items], total=len(items))


@router.get("/awaiting", response_model=list[AwaitingSignature])
async def list_awaiting_signature_endpoint(
    service: SignatureService = Depends(get_signature_service),
    current_user: User = Depends(get_current_user),
) -> list[AwaitingSignature]:
    return await service.list_awaiting(current_user)


@router.get("/{request_id}", response_model=SignatureRequestRead)
async def get_signature_request_endpoint(
    request_id: str,
    service: SignatureService = Depends(get_signature_service),
    current_user: User = Depends(get_current_user),
) -> SignatureRequestRead:
    return await service.get(request_id, current_user)


@router.post("/{request_id}/cancel", response_model=SignatureRequestRead)
async def cancel_signature_request_endpoint(
    request_id: str,
    session: AsyncSession = Depends(get_db),
    service: SignatureService = Depends(get_signature_service),
    notifier: Notifier = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
) -> SignatureRequestRead:
    await service.cancel(request_id, current_user.id)
    await session.commit()
    await dispatch_notifications(session, notifier)
    return await service.get(request_id, current_user)


@router.post("/{request_id}/remind", response_model=ReminderResponse)
async def remind_signers_endpoint(
    request_id: str,
    session: AsyncSession = Depends(get_db),
    service: SignatureService = Depends(get_signature_service),
    notifier: Notifier = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
) -> ReminderResponse:
    reminded = await service.resend_invitation(request_id, current_user.id)
    await session.commit()
    await dispatch_notifications(session, notifier)
    return ReminderResponse(signature_request_id=request_id, reminded=[signatory.id for signatory in reminded])


@router.get("/{request_id}/document")
async def download_signed_document_endpoint(
    request_id: str,
    service: SignatureService = Depends(get_signature_service),
    current_user: User = Depends(get_current_user),
) -> Response:
    artifact = await service.download_artifact(request_id, current_user)
    return Response(
        content=artifact.content,
        media_type="application/pdf",
        headers={"Content-Disposition": attachment_disposition(artifact.filename)},
    )
