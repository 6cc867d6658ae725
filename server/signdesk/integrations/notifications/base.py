"""
Notification Base Classes and Interfaces

Transactional email collaborators used by the signing engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from signdesk.core.logging import get_logger

logger = get_logger(__name__)


class NotificationType(str, Enum):
    SIGNER_INVITED = "signer_invited"
    SIGNER_CONFIRMED = "signer_confirmed"
    INITIATOR_PROGRESS = "initiator_progress"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_COMPLETED = "request_completed"
    SIGNER_DECLINED = "signer_declined"


@dataclass
class EmailMessage:
    to_email: str
    subject: str
    text_body: str
    to_name: Optional[str] = None
    tag: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class NotificationError(Exception):
    """Raised when an email could not be handed to the delivery service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class Notifier(ABC):
    """Abstract base class for email delivery."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        """
        Deliver one message.

        Raises:
            NotificationError: If the delivery service rejects the message
        """

    async def close(self) -> None:
        """Release any held resources."""


class LoggingNotifier(Notifier):
    """Development notifier: logs each message instead of sending it."""

    async def send(self, message: EmailMessage) -> None:
        logger.info(
            "notification.logged",
            to=message.to_email,
            subject=message.subject,
            tag=message.tag,
        )
