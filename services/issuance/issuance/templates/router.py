"""Template router — instructors create and list their certificate templates."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.database import get_db
from issuance.templates import controller
from issuance.templates.schemas import TemplateCreate, TemplateResponse
from shared.auth.dependencies import require_roles
from shared.constants import Role
from shared.models.user import CurrentUser

router = APIRouter(prefix="/templates", tags=["Templates"])

_instructor = require_roles(Role.INSTRUCTOR)


@router.post(
    "",
    response_model=TemplateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a certificate template",
    description="Stores the course details and where the recipient's name is drawn on the page.",
)
async def create_template(
    body: TemplateCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(_instructor),
) -> TemplateResponse:
    return await controller.create_template(db, user.id, body)


@router.get(
    "/me",
    response_model=list[TemplateResponse],
    summary="List my templates",
)
async def list_my_templates(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(_instructor),
) -> list[TemplateResponse]:
    return await controller.list_my_templates(db, user.id)


@router.get(
    "/{template_id}",
    response_model=TemplateResponse,
    summary="Get template by ID",
)
async def get_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(_instructor),
) -> TemplateResponse:
    return await controller.get_template(db, template_id)
