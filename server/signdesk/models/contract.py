from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signdesk.db.base import Base
from signdesk.models.mixins import Identifier, TimestampMixin


class ContractStatus(str, Enum):
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    SIGNED = "signed"


class Contract(TimestampMixin, Base):
    __tablename__ = "contracts"

    id: Mapped[Identifier]
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ContractStatus] = mapped_column(SAEnum(ContractStatus), default=ContractStatus.DRAFT, nullable=False)
    signed_artifact_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    owner: Mapped["User"] = relationship(back_populates="contracts")
    signature_requests: Mapped[list["SignatureRequest"]] = relationship(
        cascade="all,delete-orphan",
        passive_deletes=True,
    )
    shared_accesses: Mapped[list["SharedAccess"]] = relationship(
        cascade="all,delete-orphan",
        passive_deletes=True,
    )
