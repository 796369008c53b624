"""Access code ledger — validation, atomic consumption, lifecycle transitions.

Pure business logic, no FastAPI imports.

``used_count`` is only ever changed by :func:`consume_once`, through a single
conditional ``UPDATE ... WHERE used_count < usage_limit``. The row store
serialises concurrent updates of the same row, so two redemptions racing for
the last use produce exactly one success.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.config import Settings
from issuance.exceptions import (
    AccessCodeGenerationError,
    AccessCodeNotFoundError,
    InvalidStatusTransitionError,
    NotTemplateOwnerError,
    TemplateNotFoundError,
)
from issuance.integrity import generate_access_code, generate_unique_link
from issuance.models.access_code import AccessCode
from issuance.models.enums import AccessCodeRejection, AccessCodeStatus
from issuance.models.template import CertificateTemplate
from shared.database.types import utcnow

logger = logging.getLogger(__name__)

MAX_GENERATION_ATTEMPTS = 5


@dataclass(frozen=True)
class AccessCodeValidation:
    valid: bool
    reason: AccessCodeRejection | None = None
    access_code: AccessCode | None = None


@dataclass(frozen=True)
class ConsumeResult:
    success: bool
    new_used_count: int | None = None
    reason: AccessCodeRejection | None = None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def rejection_for(code: AccessCode | None, now: datetime) -> AccessCodeRejection | None:
    """Why ``code`` cannot be redeemed at ``now``, or None if it can.

    Order: not found, expired, disabled, exhausted. Expiry is strict:
    a code is still valid at exactly ``expires_at``.
    """
    if code is None:
        return AccessCodeRejection.NOT_FOUND
    if code.status == AccessCodeStatus.EXPIRED or (
        code.expires_at is not None and now > code.expires_at
    ):
        return AccessCodeRejection.EXPIRED
    if code.status == AccessCodeStatus.DISABLED:
        return AccessCodeRejection.DISABLED
    if code.used_count >= code.usage_limit:
        return AccessCodeRejection.EXHAUSTED
    return None


async def _load(db: AsyncSession, code_id: UUID) -> AccessCode | None:
    # populate_existing: the conditional update bypasses the identity map
    stmt = (
        select(AccessCode)
        .where(AccessCode.code_id == code_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def validate(
    db: AsyncSession,
    code_id: UUID,
    *,
    now: datetime | None = None,
) -> AccessCodeValidation:
    code = await _load(db, code_id)
    reason = rejection_for(code, now or utcnow())
    if reason is not None:
        return AccessCodeValidation(valid=False, reason=reason, access_code=code)
    return AccessCodeValidation(valid=True, access_code=code)


async def get_access_code(db: AsyncSession, code_id: UUID) -> AccessCode:
    code = await _load(db, code_id)
    if code is None:
        raise AccessCodeNotFoundError(str(code_id))
    return code


# ---------------------------------------------------------------------------
# Atomic consumption
# ---------------------------------------------------------------------------


async def consume_once(
    db: AsyncSession,
    code_id: UUID,
    *,
    now: datetime | None = None,
) -> ConsumeResult:
    """Spend one use of ``code_id``.

    The guard and the increment are one statement, never read-then-write.
    On a zero-row update the code is re-read to report why; if it looks
    redeemable again by then (a concurrent status change), the race is
    reported as exhausted.
    """
    now = now or utcnow()
    stmt = (
        update(AccessCode)
        .where(
            AccessCode.code_id == code_id,
            AccessCode.status == AccessCodeStatus.ACTIVE,
            AccessCode.used_count < AccessCode.usage_limit,
            or_(AccessCode.expires_at.is_(None), AccessCode.expires_at >= now),
        )
        .values(used_count=AccessCode.used_count + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)

    if result.rowcount == 1:
        new_count = await db.scalar(
            select(AccessCode.used_count).where(AccessCode.code_id == code_id)
        )
        logger.info("Access code %s consumed (used_count=%s)", code_id, new_count)
        return ConsumeResult(success=True, new_used_count=new_count)

    validation = await validate(db, code_id, now=now)
    reason = validation.reason or AccessCodeRejection.EXHAUSTED
    used = validation.access_code.used_count if validation.access_code else None
    logger.info("Access code %s not consumed: %s", code_id, reason.value)
    return ConsumeResult(success=False, new_used_count=used, reason=reason)


# ---------------------------------------------------------------------------
# Creation and resolution
# ---------------------------------------------------------------------------


async def create_access_code(
    db: AsyncSession,
    template_id: UUID,
    instructor_id: UUID,
    settings: Settings,
    *,
    usage_limit: int = 1,
    expires_at: datetime | None = None,
    enforce_owner: bool = True,
) -> AccessCode:
    """Create a code for a template, retrying generation on collision."""
    template = await db.get(CertificateTemplate, template_id)
    if template is None:
        raise TemplateNotFoundError(str(template_id))
    if enforce_owner and template.instructor_id != instructor_id:
        raise NotTemplateOwnerError()

    for _ in range(MAX_GENERATION_ATTEMPTS):
        code = generate_access_code(settings.access_code_length)
        link = generate_unique_link(settings.access_link_length)
        clash = await db.scalar(
            select(AccessCode.code_id).where(
                or_(AccessCode.code == code, AccessCode.unique_link == link)
            )
        )
        if clash is None:
            break
    else:
        raise AccessCodeGenerationError()

    access_code = AccessCode(
        template_id=template_id,
        code=code,
        unique_link=link,
        status=AccessCodeStatus.ACTIVE,
        expires_at=expires_at,
        usage_limit=usage_limit,
        used_count=0,
        created_by=instructor_id,
    )
    db.add(access_code)
    await db.flush()
    await db.refresh(access_code)
    return access_code


async def resolve(
    db: AsyncSession,
    link: str,
    code: str,
    *,
    now: datetime | None = None,
) -> AccessCodeValidation:
    """Student entry point: find the code behind ``link`` and check the secret.

    A wrong secret is reported as not found so links cannot be enumerated.
    """
    stmt = select(AccessCode).where(AccessCode.unique_link == link)
    access_code = (await db.execute(stmt)).scalar_one_or_none()
    if access_code is None or not hmac.compare_digest(
        access_code.code.upper(), code.strip().upper()
    ):
        return AccessCodeValidation(valid=False, reason=AccessCodeRejection.NOT_FOUND)
    return await validate(db, access_code.code_id, now=now)


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------


async def disable(db: AsyncSession, code_id: UUID) -> AccessCode:
    """Any state → disabled. Disabling a disabled code is a no-op."""
    code = await get_access_code(db, code_id)
    if code.status == AccessCodeStatus.DISABLED:
        return code
    code.status = AccessCodeStatus.DISABLED
    await db.flush()
    await db.refresh(code)
    return code


async def expire(db: AsyncSession, code_id: UUID) -> AccessCode:
    """Active → expired. Expired and disabled codes are terminal."""
    code = await get_access_code(db, code_id)
    if code.status == AccessCodeStatus.EXPIRED:
        return code
    if code.status != AccessCodeStatus.ACTIVE:
        raise InvalidStatusTransitionError(code.status.value, AccessCodeStatus.EXPIRED.value)
    code.status = AccessCodeStatus.EXPIRED
    await db.flush()
    await db.refresh(code)
    return code


async def get_managed_access_code(
    db: AsyncSession,
    code_id: UUID,
    user_id: UUID,
    *,
    is_admin: bool = False,
) -> AccessCode:
    """Load a code for an administrative action by its template's owner (or an admin)."""
    code = await get_access_code(db, code_id)
    if is_admin:
        return code
    owner = await db.scalar(
        select(CertificateTemplate.instructor_id).where(
            CertificateTemplate.template_id == code.template_id
        )
    )
    if owner != user_id:
        raise NotTemplateOwnerError()
    return code
