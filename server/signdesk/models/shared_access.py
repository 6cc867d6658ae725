from __future__ import annotations

from enum import Enum

from sqlalchemy import Enum as SAEnum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signdesk.db.base import Base
from signdesk.models.mixins import Identifier, Timestamp


class AccessType(str, Enum):
    SIGNATORY = "signatory"


class SharedAccess(Base):
    __tablename__ = "shared_access"
    __table_args__ = (UniqueConstraint("user_id", "contract_id", name="uq_shared_access_user_contract"),)

    id: Mapped[Identifier]
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    contract_id: Mapped[str] = mapped_column(ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True)
    access_type: Mapped[AccessType] = mapped_column(SAEnum(AccessType), default=AccessType.SIGNATORY, nullable=False)
    created_at: Mapped[Timestamp]
