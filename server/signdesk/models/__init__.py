from signdesk.models.audit import AuditCategory, AuditLog
from signdesk.models.contract import Contract, ContractStatus
from signdesk.models.event import (
    NotificationOutbox,
    NotificationStatus,
    ProcessedEvent,
    ProcessedEventStatus,
)
from signdesk.models.shared_access import AccessType, SharedAccess
from signdesk.models.signature import (
    ACTIVE_REQUEST_STATUSES,
    TERMINAL_REQUEST_STATUSES,
    Signatory,
    SignatoryStatus,
    SignatureRequest,
    SignatureRequestStatus,
    SigningOrder,
)
from signdesk.models.user import User

__all__ = [
    "ACTIVE_REQUEST_STATUSES",
    "TERMINAL_REQUEST_STATUSES",
    "AccessType",
    "AuditCategory",
    "AuditLog",
    "Contract",
    "ContractStatus",
    "NotificationOutbox",
    "NotificationStatus",
    "ProcessedEvent",
    "ProcessedEventStatus",
    "SharedAccess",
    "Signatory",
    "SignatoryStatus",
    "SignatureRequest",
    "SignatureRequestStatus",
    "SigningOrder",
    "User",
]
