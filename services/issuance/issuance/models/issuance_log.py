import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base
from shared.database.types import UTCDateTime, utcnow

from .enums import AuditAction, audit_action_enum


class IssuanceLog(Base):
    """Append-only audit trail for issuance and housekeeping operations."""

    __tablename__ = "issuance_logs"

    log_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    action: Mapped[AuditAction] = mapped_column(audit_action_enum, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_issuance_logs_created_at", "created_at"),)
