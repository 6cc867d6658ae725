"""
Guarded status transitions for signature requests, signatories and contracts.

Every write here is a single ``UPDATE ... WHERE id = :id AND status IN (:from)``;
the affected row count tells the caller whether its transition won.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import and_, exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from signdesk.models.audit import AuditCategory, AuditLog
from signdesk.models.contract import Contract, ContractStatus
from signdesk.models.signature import (
    Signatory,
    SignatoryStatus,
    SignatureRequest,
    SignatureRequestStatus,
    SigningOrder,
)


ALLOWED_REQUEST_TRANSITIONS: dict[SignatureRequestStatus, tuple[SignatureRequestStatus, ...]] = {
    SignatureRequestStatus.PENDING: (
        SignatureRequestStatus.IN_PROGRESS,
        SignatureRequestStatus.COMPLETED,
        SignatureRequestStatus.CANCELLED,
        SignatureRequestStatus.EXPIRED,
    ),
    SignatureRequestStatus.IN_PROGRESS: (
        SignatureRequestStatus.COMPLETED,
        SignatureRequestStatus.CANCELLED,
        SignatureRequestStatus.EXPIRED,
    ),
    SignatureRequestStatus.COMPLETED: (),
    SignatureRequestStatus.CANCELLED: (),
    SignatureRequestStatus.EXPIRED: (),
}

ALLOWED_SIGNATORY_TRANSITIONS: dict[SignatoryStatus, tuple[SignatoryStatus, ...]] = {
    SignatoryStatus.WAITING: (SignatoryStatus.PENDING, SignatoryStatus.SIGNED, SignatoryStatus.DECLINED),
    SignatoryStatus.PENDING: (SignatoryStatus.SIGNED, SignatoryStatus.DECLINED),
    SignatoryStatus.SIGNED: (),
    SignatoryStatus.DECLINED: (),
}


@dataclass(slots=True)
class TransitionResult:
    succeeded: bool
    reason: str | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def request_sources(target: SignatureRequestStatus) -> tuple[SignatureRequestStatus, ...]:
    return tuple(source for source, targets in ALLOWED_REQUEST_TRANSITIONS.items() if target in targets)


def signatory_sources(target: SignatoryStatus) -> tuple[SignatoryStatus, ...]:
    return tuple(source for source, targets in ALLOWED_SIGNATORY_TRANSITIONS.items() if target in targets)


def can_transition_request(current: SignatureRequestStatus, target: SignatureRequestStatus) -> bool:
    return target in ALLOWED_REQUEST_TRANSITIONS.get(current, ())


async def transition_request(
    session: AsyncSession,
    request_id: str,
    target: SignatureRequestStatus,
    *,
    sources: Iterable[SignatureRequestStatus] | None = None,
    **values: Any,
) -> TransitionResult:
    allowed = tuple(sources) if sources is not None else request_sources(target)
    result = await session.execute(
        update(SignatureRequest)
        .where(SignatureRequest.id == request_id, SignatureRequest.status.in_(allowed))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return TransitionResult(False, f"request {request_id} is not in {[status.value for status in allowed]}")
    return TransitionResult(succeeded=True)


async def transition_signatory(
    session: AsyncSession,
    signatory: Signatory,
    target: SignatoryStatus,
    *,
    enforce_sequence: SigningOrder | None = None,
    **values: Any,
) -> TransitionResult:
    """
    Move one signatory to ``target`` if it is still in an allowed source status.

    With ``enforce_sequence`` the same statement also requires every lower
    sequence index to be signed and, for sequential requests, no other
    signatory of the request to be pending.
    """
    conditions = [
        Signatory.id == signatory.id,
        Signatory.status.in_(signatory_sources(target)),
    ]
    if enforce_sequence is not None:
        other = aliased(Signatory)
        conditions.append(
            ~exists().where(
                other.signature_request_id == signatory.signature_request_id,
                other.sequence_index < signatory.sequence_index,
                other.status != SignatoryStatus.SIGNED,
            )
        )
        if enforce_sequence is SigningOrder.SEQUENTIAL:
            conditions.append(
                ~exists().where(
                    other.signature_request_id == signatory.signature_request_id,
                    other.id != signatory.id,
                    other.status == SignatoryStatus.PENDING,
                )
            )
    result = await session.execute(
        update(Signatory)
        .where(and_(*conditions))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return TransitionResult(False, f"signatory {signatory.id} cannot move to {target.value}")
    return TransitionResult(succeeded=True)


async def force_signatories_signed(session: AsyncSession, request_id: str, signed_at: datetime) -> int:
    result = await session.execute(
        update(Signatory)
        .where(Signatory.signature_request_id == request_id, Signatory.status != SignatoryStatus.SIGNED)
        .values(status=SignatoryStatus.SIGNED, signed_at=signed_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def set_contract_status(
    session: AsyncSession,
    contract_id: str,
    target: ContractStatus,
    *,
    sources: Iterable[ContractStatus],
    **values: Any,
) -> bool:
    result = await session.execute(
        update(Contract)
        .where(Contract.id == contract_id, Contract.status.in_(tuple(sources)))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def load_request(session: AsyncSession, request_id: str) -> SignatureRequest | None:
    """Load a request and its signatories, overwriting any stale identity-map state."""
    result = await session.execute(
        select(SignatureRequest)
        .where(SignatureRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


def record_audit(
    session: AsyncSession,
    *,
    action: str,
    category: AuditCategory,
    signature_request_id: str | None = None,
    contract_id: str | None = None,
    actor: str = "system",
    details: dict | None = None,
    critical: bool = False,
) -> AuditLog:
    entry = AuditLog(
        signature_request_id=signature_request_id,
        contract_id=contract_id,
        actor=actor,
        action=action,
        category=category,
        details=details or {},
        critical=critical,
    )
    session.add(entry)
    return entry
