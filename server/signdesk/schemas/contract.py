from datetime import datetime

from pydantic import Field

from signdesk.models.contract import ContractStatus
from signdesk.schemas.common import ORMModel, Timestamped


class ContractCreate(ORMModel):
    title: str = Field(min_length=1, max_length=255)
    body: str | None = None
    extracted_text: str | None = None


class ContractRead(Timestamped):
    id: str
    owner_id: str
    title: str
    status: ContractStatus
    signed_artifact_path: str | None = None
    signed_at: datetime | None = None
