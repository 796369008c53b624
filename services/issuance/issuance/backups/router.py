"""Backup router — admin-only snapshot, restore, retention, and history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.backups import controller
from issuance.backups.schemas import (
    BackupOperationResponse,
    BackupStatsResponse,
    CleanupRequest,
    CleanupResponse,
    IncrementalBackupRequest,
    RestoreRequest,
    RestoreResponse,
)
from issuance.backups.service import DEFAULT_HISTORY_LIMIT, SessionFactory
from issuance.config import Settings
from issuance.database import get_db, get_session_factory
from issuance.dependencies import get_blob_store, get_settings
from issuance.storage import BlobStore
from shared.auth.dependencies import require_roles
from shared.constants import Role
from shared.models.user import CurrentUser

router = APIRouter(prefix="/backups", tags=["Backups"])

_admin = require_roles(Role.ADMIN)


@router.post(
    "/full",
    response_model=BackupOperationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a full backup",
    description="Snapshots every collection, compresses, optionally encrypts, "
    "and stores one JSON document. A failed run is recorded and returned as an error.",
)
async def create_full_backup(
    session_factory: SessionFactory = Depends(get_session_factory),
    blob_store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
    admin: CurrentUser = Depends(_admin),
) -> BackupOperationResponse:
    return await controller.create_full_backup(session_factory, blob_store, settings)


@router.post(
    "/incremental",
    response_model=BackupOperationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an incremental backup",
)
async def create_incremental_backup(
    body: IncrementalBackupRequest,
    session_factory: SessionFactory = Depends(get_session_factory),
    blob_store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
    admin: CurrentUser = Depends(_admin),
) -> BackupOperationResponse:
    return await controller.create_incremental_backup(session_factory, blob_store, body, settings)


@router.get(
    "",
    response_model=list[BackupOperationResponse],
    summary="Backup history (newest first)",
)
async def get_history(
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(_admin),
) -> list[BackupOperationResponse]:
    return await controller.get_history(db, limit)


@router.get(
    "/stats",
    response_model=BackupStatsResponse,
    summary="Backup statistics",
)
async def get_stats(
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(_admin),
) -> BackupStatsResponse:
    return await controller.get_stats(db)


@router.post(
    "/cleanup",
    response_model=CleanupResponse,
    summary="Prune completed backups past retention",
    description="Deletes completed backups strictly older than the retention window. "
    "Failures are reported per backup.",
)
async def cleanup(
    body: CleanupRequest,
    session_factory: SessionFactory = Depends(get_session_factory),
    blob_store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
    admin: CurrentUser = Depends(_admin),
) -> CleanupResponse:
    return await controller.cleanup(session_factory, blob_store, body, settings)


@router.get(
    "/{operation_id}",
    response_model=BackupOperationResponse,
    summary="Get a backup operation",
)
async def get_backup(
    operation_id: str,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(_admin),
) -> BackupOperationResponse:
    return await controller.get_backup(db, operation_id)


@router.post(
    "/{operation_id}/restore",
    response_model=RestoreResponse,
    summary="Restore a backup",
    description="Verifies the checksum (unless disabled) before touching any data. "
    "Collections are restored independently; failures are listed in `errors`.",
)
async def restore(
    operation_id: str,
    body: RestoreRequest,
    session_factory: SessionFactory = Depends(get_session_factory),
    blob_store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
    admin: CurrentUser = Depends(_admin),
) -> RestoreResponse:
    return await controller.restore(session_factory, blob_store, operation_id, body, settings)
