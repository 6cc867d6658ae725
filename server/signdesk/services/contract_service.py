from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.core.errors import Forbidden, NotFound
from signdesk.core.logging import get_logger
from signdesk.models.contract import Contract, ContractStatus
from signdesk.models.user import User
from signdesk.schemas.contract import ContractCreate
from signdesk.services.access_service import has_access

logger = get_logger(__name__)


async def create_contract(session: AsyncSession, data: ContractCreate, *, owner_id: str) -> Contract:
    contract = Contract(
        owner_id=owner_id,
        title=data.title,
        body=data.body,
        extracted_text=data.extracted_text,
        status=ContractStatus.DRAFT,
    )
    session.add(contract)
    await session.flush()
    await session.refresh(contract)
    logger.info("contract.created", contract_id=contract.id, owner_id=owner_id)
    return contract


async def get_contract_for_reader(session: AsyncSession, contract_id: str, reader: User) -> Contract:
    """Owners and users holding shared access may read a contract."""
    contract = await session.get(Contract, contract_id, populate_existing=True)
    if contract is None:
        raise NotFound("Contract not found", details={"contract_id": contract_id})
    if contract.owner_id != reader.id and not await has_access(session, reader.id, contract_id):
        raise Forbidden("You do not have access to this contract")
    return contract
