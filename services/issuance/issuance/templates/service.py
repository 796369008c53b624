"""Certificate template service — creation and lookup.

Pure business logic, no FastAPI imports.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.exceptions import TemplateNotFoundError
from issuance.models.enums import TemplateOrientation
from issuance.models.template import CertificateTemplate


async def create_template(
    db: AsyncSession,
    instructor_id: UUID,
    *,
    course_name: str,
    course_description: str | None = None,
    organization_name: str | None = None,
    name_x: float = 0.5,
    name_y: float = 0.52,
    font_size: int = 32,
    font_color: str = "#1f2937",
    orientation: TemplateOrientation = TemplateOrientation.LANDSCAPE,
) -> CertificateTemplate:
    template = CertificateTemplate(
        instructor_id=instructor_id,
        course_name=course_name,
        course_description=course_description,
        organization_name=organization_name,
        name_x=name_x,
        name_y=name_y,
        font_size=font_size,
        font_color=font_color,
        orientation=orientation,
        is_active=True,
    )
    db.add(template)
    await db.flush()
    await db.refresh(template)
    return template


async def get_template(db: AsyncSession, template_id: UUID) -> CertificateTemplate:
    template = await db.get(CertificateTemplate, template_id)
    if template is None:
        raise TemplateNotFoundError(str(template_id))
    return template


async def get_active_template(db: AsyncSession, template_id: UUID) -> CertificateTemplate:
    """Issuance only renders from active templates; an inactive one is reported missing."""
    template = await get_template(db, template_id)
    if not template.is_active:
        raise TemplateNotFoundError(str(template_id))
    return template


async def list_instructor_templates(
    db: AsyncSession,
    instructor_id: UUID,
) -> list[CertificateTemplate]:
    stmt = (
        select(CertificateTemplate)
        .where(CertificateTemplate.instructor_id == instructor_id)
        .order_by(CertificateTemplate.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
