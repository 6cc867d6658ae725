from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signdesk.core.logging import get_logger
from signdesk.models.audit import AuditCategory
from signdesk.models.contract import ContractStatus
from signdesk.models.signature import SignatureRequest, SignatureRequestStatus
from signdesk.services.background import PeriodicJob
from signdesk.services.signature_state import record_audit, set_contract_status, transition_request, utcnow

logger = get_logger(__name__)


def eligible_statuses(include_in_progress: bool) -> tuple[SignatureRequestStatus, ...]:
    if include_in_progress:
        return (SignatureRequestStatus.PENDING, SignatureRequestStatus.IN_PROGRESS)
    return (SignatureRequestStatus.PENDING,)


async def find_expired_requests(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    include_in_progress: bool = True,
) -> list[tuple[str, str]]:
    now = now or utcnow()
    result = await session.execute(
        select(SignatureRequest.id, SignatureRequest.contract_id).where(
            SignatureRequest.status.in_(eligible_statuses(include_in_progress)),
            SignatureRequest.expires_at.is_not(None),
            SignatureRequest.expires_at < now,
        )
    )
    return [(request_id, contract_id) for request_id, contract_id in result.all()]


async def sweep_expired_requests(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    include_in_progress: bool = True,
) -> list[str]:
    """Expire every overdue active request; returns the ids this pass actually expired."""
    candidates = await find_expired_requests(session, now=now, include_in_progress=include_in_progress)
    expired: list[str] = []
    for request_id, contract_id in candidates:
        result = await transition_request(
            session,
            request_id,
            SignatureRequestStatus.EXPIRED,
            sources=eligible_statuses(include_in_progress),
        )
        if not result.succeeded:
            continue
        await set_contract_status(
            session,
            contract_id,
            ContractStatus.DRAFT,
            sources=(ContractStatus.PENDING_SIGNATURE,),
        )
        record_audit(
            session,
            action="signature_request.expired",
            category=AuditCategory.EXPIRATION,
            signature_request_id=request_id,
            contract_id=contract_id,
        )
        expired.append(request_id)
    if expired:
        logger.info("expiration_sweep.expired", count=len(expired), signature_request_ids=expired)
    return expired


class ExpirationSweeper(PeriodicJob):
    """Runs ``sweep_expired_requests`` on a fixed interval in the background."""

    name = "expiration_sweep"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        interval_seconds: float,
        include_in_progress: bool = True,
    ):
        super().__init__(interval_seconds=interval_seconds)
        self.session_factory = session_factory
        self.include_in_progress = include_in_progress

    async def run_once(self) -> list[str]:
        async with self.session_factory() as session:
            expired = await sweep_expired_requests(session, include_in_progress=self.include_in_progress)
            await session.commit()
        return expired
