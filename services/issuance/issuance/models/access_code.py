import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.database.postgres import Base
from shared.database.types import UTCDateTime, utcnow

from .enums import AccessCodeStatus, access_code_status_enum


class AccessCode(Base):
    __tablename__ = "access_codes"

    code_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("certificate_templates.template_id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    unique_link: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[AccessCodeStatus] = mapped_column(
        access_code_status_enum, nullable=False, default=AccessCodeStatus.ACTIVE
    )
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    usage_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Only mutated by the ledger's conditional increment
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    template = relationship("CertificateTemplate", back_populates="access_codes", lazy="select")

    __table_args__ = (
        CheckConstraint("usage_limit > 0", name="ck_access_codes_usage_limit_positive"),
        CheckConstraint("used_count >= 0", name="ck_access_codes_used_count_non_negative"),
        CheckConstraint("used_count <= usage_limit", name="ck_access_codes_used_within_limit"),
        Index("ix_access_codes_template_id", "template_id"),
    )

    @property
    def remaining_uses(self) -> int:
        return max(self.usage_limit - self.used_count, 0)
