from __future__ import annotations

from enum import Enum

from sqlalchemy import Boolean, Enum as SAEnum, ForeignKey, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from signdesk.db.base import Base
from signdesk.models.mixins import Identifier, TimestampMixin


class AuditCategory(str, Enum):
    SIGNATURE = "signature"
    WEBHOOK = "webhook"
    EXPIRATION = "expiration"
    ACCESS = "access"
    SYSTEM = "system"


class AuditLog(TimestampMixin, Base):
    __tablename__ = "audit_logs"

    id: Mapped[Identifier]
    signature_request_id: Mapped[str | None] = mapped_column(
        ForeignKey("signature_requests.id", ondelete="CASCADE"), nullable=True, index=True
    )
    contract_id: Mapped[str | None] = mapped_column(
        ForeignKey("contracts.id", ondelete="CASCADE"), nullable=True, index=True
    )
    actor: Mapped[str] = mapped_column(String(80), nullable=False, default="system")
    action: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[AuditCategory] = mapped_column(SAEnum(AuditCategory), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
