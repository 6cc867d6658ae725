from signdesk.schemas.auth import TokenResponse
from signdesk.schemas.contract import ContractCreate, ContractRead
from signdesk.schemas.signature import (
    AwaitingSignature,
    ReminderResponse,
    SignatoryInput,
    SignatoryRead,
    SignatureRequestCollection,
    SignatureRequestCreate,
    SignatureRequestRead,
    SignatureRequestSummary,
)
from signdesk.schemas.user import UserCreate, UserRead
from signdesk.schemas.webhook import WebhookAck, WebhookEventType

__all__ = [
    "AwaitingSignature",
    "ContractCreate",
    "ContractRead",
    "ReminderResponse",
    "SignatoryInput",
    "SignatoryRead",
    "SignatureRequestCollection",
    "SignatureRequestCreate",
    "SignatureRequestRead",
    "SignatureRequestSummary",
    "TokenResponse",
    "UserCreate",
    "UserRead",
    "WebhookAck",
    "WebhookEventType",
]
