import uuid
from datetime import datetime

from sqlalchemy import Boolean, Float, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.database.postgres import Base
from shared.database.types import UTCDateTime, utcnow

from .enums import TemplateOrientation, template_orientation_enum


class CertificateTemplate(Base):
    __tablename__ = "certificate_templates"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    # Soft reference: instructors live in the identity service
    instructor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    course_name: Mapped[str] = mapped_column(String(300), nullable=False)
    course_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    organization_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Recipient-name placement, as fractions of page width/height from bottom-left
    name_x: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    name_y: Mapped[float] = mapped_column(Float, nullable=False, default=0.52)
    font_size: Mapped[int] = mapped_column(Integer, nullable=False, default=32)
    font_color: Mapped[str] = mapped_column(String(7), nullable=False, default="#1f2937")
    orientation: Mapped[TemplateOrientation] = mapped_column(
        template_orientation_enum, nullable=False, default=TemplateOrientation.LANDSCAPE
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    access_codes = relationship("AccessCode", back_populates="template", lazy="select")
