"""Template controller — maps service results to HTTP responses."""

from __future__ import annotations

from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.exceptions import TemplateNotFoundError
from issuance.templates import service
from issuance.templates.schemas import TemplateCreate, TemplateResponse


async def create_template(
    db: AsyncSession, instructor_id: UUID, body: TemplateCreate
) -> TemplateResponse:
    template = await service.create_template(db, instructor_id, **body.model_dump())
    return TemplateResponse.model_validate(template)


async def list_my_templates(db: AsyncSession, instructor_id: UUID) -> list[TemplateResponse]:
    templates = await service.list_instructor_templates(db, instructor_id)
    return [TemplateResponse.model_validate(t) for t in templates]


async def get_template(db: AsyncSession, template_id: UUID) -> TemplateResponse:
    try:
        template = await service.get_template(db, template_id)
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return TemplateResponse.model_validate(template)
