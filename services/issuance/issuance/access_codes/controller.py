"""Access code controller — maps service results to HTTP responses."""

from __future__ import annotations

from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.access_codes import service
from issuance.access_codes.schemas import (
    AccessCodeCreate,
    AccessCodeResponse,
    AccessCodeValidationResponse,
    ResolveRequest,
    ResolveResponse,
)
from issuance.config import Settings
from issuance.exceptions import (
    AccessCodeGenerationError,
    AccessCodeNotFoundError,
    InvalidStatusTransitionError,
    NotTemplateOwnerError,
    TemplateNotFoundError,
)
from issuance.models.enums import AccessCodeRejection
from issuance.templates.service import get_active_template
from shared.constants import Role
from shared.models.user import CurrentUser


def _handle_domain_error(exc: Exception) -> HTTPException | None:
    if isinstance(exc, (AccessCodeNotFoundError, TemplateNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, NotTemplateOwnerError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not own this template.",
        )
    if isinstance(exc, InvalidStatusTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, AccessCodeGenerationError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not generate a unique access code. Try again.",
        )
    return None


async def create_access_code(
    db: AsyncSession,
    template_id: UUID,
    user: CurrentUser,
    body: AccessCodeCreate,
    settings: Settings,
) -> AccessCodeResponse:
    try:
        code = await service.create_access_code(
            db,
            template_id,
            user.id,
            settings,
            usage_limit=body.usage_limit,
            expires_at=body.expires_at,
            enforce_owner=not user.has_role(Role.ADMIN),
        )
    except Exception as exc:
        mapped = _handle_domain_error(exc)
        if mapped is None:
            raise
        raise mapped from exc
    return AccessCodeResponse.model_validate(code)


async def validate_access_code(
    db: AsyncSession,
    code_id: UUID,
    user: CurrentUser,
) -> AccessCodeValidationResponse:
    try:
        await service.get_managed_access_code(
            db, code_id, user.id, is_admin=user.has_role(Role.ADMIN)
        )
    except Exception as exc:
        mapped = _handle_domain_error(exc)
        if mapped is None:
            raise
        raise mapped from exc

    result = await service.validate(db, code_id)
    code = result.access_code
    return AccessCodeValidationResponse(
        valid=result.valid,
        reason=result.reason,
        code_id=code_id,
        status=code.status if code else None,
        used_count=code.used_count if code else None,
        usage_limit=code.usage_limit if code else None,
        expires_at=code.expires_at if code else None,
    )


async def resolve_access_code(db: AsyncSession, body: ResolveRequest) -> ResolveResponse:
    result = await service.resolve(db, body.link, body.code)
    if not result.valid:
        return ResolveResponse(valid=False, reason=result.reason)

    code = result.access_code
    try:
        template = await get_active_template(db, code.template_id)
    except TemplateNotFoundError:
        return ResolveResponse(valid=False, reason=AccessCodeRejection.NOT_FOUND)
    return ResolveResponse(
        valid=True,
        access_code_id=code.code_id,
        template_id=template.template_id,
        course_name=template.course_name,
        organization_name=template.organization_name,
        remaining_uses=code.remaining_uses,
    )


async def change_status(
    db: AsyncSession,
    code_id: UUID,
    user: CurrentUser,
    *,
    target: str,
) -> AccessCodeResponse:
    transition = service.disable if target == "disable" else service.expire
    try:
        await service.get_managed_access_code(
            db, code_id, user.id, is_admin=user.has_role(Role.ADMIN)
        )
        code = await transition(db, code_id)
    except Exception as exc:
        mapped = _handle_domain_error(exc)
        if mapped is None:
            raise
        raise mapped from exc
    return AccessCodeResponse.model_validate(code)
