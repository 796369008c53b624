"""Backup controller — maps service results to HTTP responses."""

from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.backups import service
from issuance.backups.schemas import (
    BackupOperationResponse,
    BackupStatsResponse,
    CleanupRequest,
    CleanupResponse,
    IncrementalBackupRequest,
    RestoreRequest,
    RestoreResponse,
)
from issuance.config import Settings
from issuance.exceptions import (
    BackupNotFoundError,
    BackupNotRestorableError,
    EncryptionKeyMissingError,
    IntegrityCheckError,
    StorageError,
)
from issuance.storage import BlobStore


def _handle_domain_error(exc: Exception) -> HTTPException | None:
    if isinstance(exc, BackupNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, BackupNotRestorableError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, IntegrityCheckError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, StorageError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, EncryptionKeyMissingError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Backup encryption is enabled but no key is configured.",
        )
    return None


def _reraise(exc: Exception) -> NoReturn:
    mapped = _handle_domain_error(exc)
    if mapped is None:
        raise exc
    raise mapped from exc


async def create_full_backup(
    session_factory: service.SessionFactory,
    blob_store: BlobStore,
    settings: Settings,
) -> BackupOperationResponse:
    try:
        op = await service.create_full_backup(
            session_factory, blob_store, service.BackupSettings.from_settings(settings)
        )
    except Exception as exc:
        _reraise(exc)
    return BackupOperationResponse.model_validate(op)


async def create_incremental_backup(
    session_factory: service.SessionFactory,
    blob_store: BlobStore,
    body: IncrementalBackupRequest,
    settings: Settings,
) -> BackupOperationResponse:
    try:
        op = await service.create_incremental_backup(
            session_factory,
            blob_store,
            body.since,
            service.BackupSettings.from_settings(settings),
        )
    except Exception as exc:
        _reraise(exc)
    return BackupOperationResponse.model_validate(op)


async def restore(
    session_factory: service.SessionFactory,
    blob_store: BlobStore,
    operation_id: str,
    body: RestoreRequest,
    settings: Settings,
) -> RestoreResponse:
    try:
        result = await service.restore(
            session_factory,
            blob_store,
            operation_id,
            service.BackupSettings.from_settings(settings),
            verify_integrity=body.verify_integrity,
        )
    except Exception as exc:
        _reraise(exc)
    return RestoreResponse.model_validate(result)


async def cleanup(
    session_factory: service.SessionFactory,
    blob_store: BlobStore,
    body: CleanupRequest,
    settings: Settings,
) -> CleanupResponse:
    retention_days = body.retention_days or settings.backup_retention_days
    result = await service.cleanup_old_backups(session_factory, blob_store, retention_days)
    return CleanupResponse.model_validate(result)


async def get_history(db: AsyncSession, limit: int) -> list[BackupOperationResponse]:
    ops = await service.get_backup_history(db, limit)
    return [BackupOperationResponse.model_validate(op) for op in ops]


async def get_backup(db: AsyncSession, operation_id: str) -> BackupOperationResponse:
    try:
        op = await service.get_backup(db, operation_id)
    except BackupNotFoundError as exc:
        _reraise(exc)
    return BackupOperationResponse.model_validate(op)


async def get_stats(db: AsyncSession) -> BackupStatsResponse:
    return BackupStatsResponse(**await service.get_backup_stats(db))
