from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.api.dependencies.auth import get_current_user
from signdesk.api.dependencies.database import get_db
from signdesk.models.user import User
from signdesk.schemas.contract import ContractCreate, ContractRead
from signdesk.services.contract_service import create_contract, get_contract_for_reader


router = APIRouter(prefix="/contracts", tags=["contracts"])


@router.post("", response_model=ContractRead, status_code=status.HTTP_201_CREATED)
async def create_contract_endpoint(
    payload: ContractCreate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ContractRead:
    contract = await create_contract(session, payload, owner_id=current_user.id)
    await session.commit()
    return ContractRead.model_validate(contract)


@router.get("/{contract_id}", response_model=ContractRead)
async def get_contract_endpoint(
    contract_id: str,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ContractRead:
    contract = await get_contract_for_reader(session, contract_id, current_user)
    return ContractRead.model_validate(contract)
