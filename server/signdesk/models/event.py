from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from signdesk.db.base import Base
from signdesk.models.mixins import Identifier, TimestampMixin


class ProcessedEventStatus(str, Enum):
    PROCESSED = "processed"
    DEFERRED = "deferred"
    FAILED = "failed"


class ProcessedEvent(TimestampMixin, Base):
    """
    Ledger of inbound provider events, keyed by the provider's event id.

    Only ``processed`` entries stop a redelivery; ``deferred`` and ``failed``
    ones let the same event id run again.
    """

    __tablename__ = "processed_events"

    id: Mapped[Identifier]
    event_id: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    status: Mapped[ProcessedEventStatus] = mapped_column(SAEnum(ProcessedEventStatus), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature_request_id: Mapped[str | None] = mapped_column(
        ForeignKey("signature_requests.id", ondelete="SET NULL"), nullable=True, index=True
    )
    signatory_id: Mapped[str | None] = mapped_column(
        ForeignKey("signatories.id", ondelete="SET NULL"), nullable=True, index=True
    )


class NotificationStatus(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class NotificationOutbox(TimestampMixin, Base):
    __tablename__ = "notification_outbox"

    id: Mapped[Identifier]
    signature_request_id: Mapped[str | None] = mapped_column(
        ForeignKey("signature_requests.id", ondelete="CASCADE"), nullable=True, index=True
    )
    notification_type: Mapped[str] = mapped_column(String(80), nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[NotificationStatus] = mapped_column(
        SAEnum(NotificationStatus), default=NotificationStatus.PENDING, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
