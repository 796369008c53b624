"""Access code router — creation, validation, student resolution, status changes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.access_codes import controller
from issuance.access_codes.schemas import (
    AccessCodeCreate,
    AccessCodeResponse,
    AccessCodeValidationResponse,
    ResolveRequest,
    ResolveResponse,
)
from issuance.config import Settings
from issuance.database import get_db
from issuance.dependencies import get_settings
from shared.auth.dependencies import require_roles
from shared.constants import Role
from shared.models.user import CurrentUser

router = APIRouter(tags=["Access Codes"])

_instructor = require_roles(Role.INSTRUCTOR)


@router.post(
    "/templates/{template_id}/access-codes",
    response_model=AccessCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an access code for a template",
    description="Generates an 8-character code and a shareable link. "
    "Only the template's owner (or an admin) may create codes.",
)
async def create_access_code(
    template_id: UUID,
    body: AccessCodeCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(_instructor),
    settings: Settings = Depends(get_settings),
) -> AccessCodeResponse:
    return await controller.create_access_code(db, template_id, user, body, settings)


@router.post(
    "/access-codes/resolve",
    response_model=ResolveResponse,
    summary="Resolve a shared link and code (public)",
    description="Public endpoint — no authentication required. "
    "A wrong code is reported as not_found.",
)
async def resolve_access_code(
    body: ResolveRequest,
    db: AsyncSession = Depends(get_db),
) -> ResolveResponse:
    return await controller.resolve_access_code(db, body)


@router.get(
    "/access-codes/{code_id}/validation",
    response_model=AccessCodeValidationResponse,
    summary="Check whether a code can be redeemed",
)
async def validate_access_code(
    code_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(_instructor),
) -> AccessCodeValidationResponse:
    return await controller.validate_access_code(db, code_id, user)


@router.post(
    "/access-codes/{code_id}/disable",
    response_model=AccessCodeResponse,
    summary="Disable an access code",
)
async def disable_access_code(
    code_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(_instructor),
) -> AccessCodeResponse:
    return await controller.change_status(db, code_id, user, target="disable")


@router.post(
    "/access-codes/{code_id}/expire",
    response_model=AccessCodeResponse,
    summary="Expire an access code",
    description="Only active codes can be expired. Expiring an expired code is a no-op.",
)
async def expire_access_code(
    code_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(_instructor),
) -> AccessCodeResponse:
    return await controller.change_status(db, code_id, user, target="expire")
