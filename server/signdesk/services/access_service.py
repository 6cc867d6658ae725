from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.core.logging import get_logger
from signdesk.models.shared_access import AccessType, SharedAccess

logger = get_logger(__name__)


async def has_access(session: AsyncSession, user_id: str, contract_id: str) -> bool:
    result = await session.execute(
        select(SharedAccess.id).where(SharedAccess.user_id == user_id, SharedAccess.contract_id == contract_id)
    )
    return result.first() is not None


async def grant_access(
    session: AsyncSession,
    *,
    user_id: str,
    contract_id: str,
    access_type: AccessType = AccessType.SIGNATORY,
) -> bool:
    """Idempotently grant read access; returns True only when a new grant row was written."""
    if await has_access(session, user_id, contract_id):
        return False
    try:
        async with session.begin_nested():
            session.add(SharedAccess(user_id=user_id, contract_id=contract_id, access_type=access_type))
    except IntegrityError:
        logger.info("shared_access.grant.raced", user_id=user_id, contract_id=contract_id)
        return False
    logger.info("shared_access.granted", user_id=user_id, contract_id=contract_id, access_type=access_type.value)
    return True
