from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class WebhookEventType(str, Enum):
    SIGNATURE_COMPLETED = "signature.completed"
    NEXT_SIGNER_READY = "signature.next_signer_ready"
    DOCUMENT_COMPLETED = "document.completed"
    SIGNATURE_DECLINED = "signature.declined"


KNOWN_EVENT_TYPES = frozenset(event_type.value for event_type in WebhookEventType)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SignatureCompletedData(WireModel):
    document_id: str = Field(alias="documentId", min_length=1)
    signer_id: str = Field(alias="signerId", min_length=1)
    completed_at: datetime = Field(alias="completedAt")


class NextSignerReadyData(WireModel):
    document_id: str = Field(alias="documentId", min_length=1)
    signer_id: str = Field(alias="signerId", min_length=1)


class DocumentCompletedData(WireModel):
    document_id: str = Field(alias="documentId", min_length=1)
    completed_at: datetime = Field(alias="completedAt")


class SignatureDeclinedData(WireModel):
    document_id: str = Field(alias="documentId", min_length=1)
    signer_id: str = Field(alias="signerId", min_length=1)
    declined_at: datetime | None = Field(default=None, alias="declinedAt")
    reason: str | None = Field(default=None, max_length=1000)


class _EventEnvelope(WireModel):
    id: str | None = Field(default=None, max_length=128)
    timestamp: datetime | None = None


class SignatureCompletedEvent(_EventEnvelope):
    event: Literal["signature.completed"]
    data: SignatureCompletedData


class NextSignerReadyEvent(_EventEnvelope):
    event: Literal["signature.next_signer_ready"]
    data: NextSignerReadyData


class DocumentCompletedEvent(_EventEnvelope):
    event: Literal["document.completed"]
    data: DocumentCompletedData


class SignatureDeclinedEvent(_EventEnvelope):
    event: Literal["signature.declined"]
    data: SignatureDeclinedData


WebhookEvent = Annotated[
    Union[SignatureCompletedEvent, NextSignerReadyEvent, DocumentCompletedEvent, SignatureDeclinedEvent],
    Field(discriminator="event"),
]

webhook_event_adapter: TypeAdapter[WebhookEvent] = TypeAdapter(WebhookEvent)


class WebhookAck(BaseModel):
    received: bool = True
    status: str
    event_type: str | None = None
    event_id: str | None = None
