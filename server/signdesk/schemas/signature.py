from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from signdesk.models.signature import SignatoryStatus, SignatureRequestStatus, SigningOrder
from signdesk.schemas.common import ORMModel, Timestamped


class SignatoryInput(BaseModel):
    name: str = Field(max_length=255)
    email: str = Field(max_length=320)


class SignatureRequestCreate(BaseModel):
    contract_id: str
    signatories: List[SignatoryInput]
    signing_order: SigningOrder = SigningOrder.SEQUENTIAL
    message: str | None = None
    expires_at: datetime | None = None


class SignatoryRead(ORMModel):
    id: str
    name: str
    email: str
    sequence_index: int
    status: SignatoryStatus
    user_id: str | None = None
    signed_at: datetime | None = None
    declined_at: datetime | None = None
    decline_reason: str | None = None
    signing_url: str | None = None
    signing_token: str | None = None


class SignatureRequestRead(Timestamped):
    id: str
    contract_id: str
    initiator_id: str
    provider_document_id: str
    status: SignatureRequestStatus
    signing_order: SigningOrder
    message: str | None = None
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    signed_artifact_path: str | None = None
    viewer_role: str = "initiator"
    signatories: List[SignatoryRead] = Field(default_factory=list)


class SignatureRequestSummary(ORMModel):
    id: str
    contract_id: str
    initiator_id: str
    status: SignatureRequestStatus
    signing_order: SigningOrder
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    total_signatories: int
    signed_count: int


class SignatureRequestCollection(BaseModel):
    items: List[SignatureRequestSummary]
    total: int


class AwaitingSignature(BaseModel):
    signature_request_id: str
    contract_id: str
    signatory_id: str
    sequence_index: int
    signing_url: str | None = None
    message: str | None = None
    expires_at: datetime | None = None


class ReminderResponse(BaseModel):
    signature_request_id: str
    reminded: List[str]
