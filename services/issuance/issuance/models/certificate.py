import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base
from shared.database.types import UTCDateTime, utcnow


class IssuedCertificate(Base):
    """One row per successful redemption. Immutable once written."""

    __tablename__ = "issued_certificates"

    certificate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    certificate_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    verification_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("certificate_templates.template_id", ondelete="CASCADE"),
        nullable=False,
    )
    access_code_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("access_codes.code_id", ondelete="CASCADE"),
        nullable=False,
    )
    # Soft reference, set when the student is signed in
    student_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    student_name: Mapped[str] = mapped_column(String(200), nullable=False)
    student_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    certificate_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(500), nullable=False)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_issued_certificates_access_code_id", "access_code_id"),
        Index("ix_issued_certificates_template_id", "template_id"),
        Index("ix_issued_certificates_issued_at", "issued_at"),
    )
