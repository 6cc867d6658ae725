from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signdesk.db.base import Base
from signdesk.models.mixins import Identifier, TimestampMixin


class SignatureRequestStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SigningOrder(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class SignatoryStatus(str, Enum):
    WAITING = "waiting"
    PENDING = "pending"
    SIGNED = "signed"
    DECLINED = "declined"


ACTIVE_REQUEST_STATUSES = (SignatureRequestStatus.PENDING, SignatureRequestStatus.IN_PROGRESS)
TERMINAL_REQUEST_STATUSES = (
    SignatureRequestStatus.COMPLETED,
    SignatureRequestStatus.CANCELLED,
    SignatureRequestStatus.EXPIRED,
)


class SignatureRequest(TimestampMixin, Base):
    __tablename__ = "signature_requests"

    id: Mapped[Identifier]
    contract_id: Mapped[str] = mapped_column(ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True)
    initiator_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    provider_document_id: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)
    status: Mapped[SignatureRequestStatus] = mapped_column(
        SAEnum(SignatureRequestStatus), default=SignatureRequestStatus.PENDING, nullable=False, index=True
    )
    signing_order: Mapped[SigningOrder] = mapped_column(
        SAEnum(SigningOrder), default=SigningOrder.SEQUENTIAL, nullable=False
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_artifact_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    signatories: Mapped[list["Signatory"]] = relationship(
        cascade="all,delete-orphan",
        passive_deletes=True,
        order_by="Signatory.sequence_index",
        lazy="selectin",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES


class Signatory(TimestampMixin, Base):
    __tablename__ = "signatories"
    __table_args__ = (
        UniqueConstraint("signature_request_id", "sequence_index", name="uq_signatory_request_sequence"),
    )

    id: Mapped[Identifier]
    signature_request_id: Mapped[str] = mapped_column(
        ForeignKey("signature_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_signer_id: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)
    signing_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signing_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    sequence_index: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[SignatoryStatus] = mapped_column(
        SAEnum(SignatoryStatus), default=SignatoryStatus.WAITING, nullable=False
    )
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
