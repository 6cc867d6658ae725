from .base import EmailMessage, LoggingNotifier, NotificationError, NotificationType, Notifier
from .postmark_adapter import PostmarkNotifier

__all__ = [
    "EmailMessage",
    "LoggingNotifier",
    "NotificationError",
    "NotificationType",
    "Notifier",
    "PostmarkNotifier",
]
