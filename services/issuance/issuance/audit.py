"""Issuance audit trail — append-only IssuanceLog rows."""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from issuance.models.enums import AuditAction
from issuance.models.issuance_log import IssuanceLog


async def record(
    db: AsyncSession,
    action: AuditAction,
    *,
    success: bool,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
) -> IssuanceLog:
    """Add an audit row to the session. The caller owns the commit."""
    entry = IssuanceLog(
        action=action,
        success=success,
        details=details or {},
        request_id=request_id,
        ip_address=ip_address,
    )
    db.add(entry)
    await db.flush()
    return entry
