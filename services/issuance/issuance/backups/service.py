"""Backup manager — full and incremental snapshots, verified restore, retention.

Pure business logic, no FastAPI imports.

Each backup is one JSON document stored in the blob store::

    {"format": "shahadati-backup", "version": 1, "operation_id": ..., "type": ...,
     "created_at": ..., "since": ..., "compression": "zlib" | "none",
     "encrypted": bool, "payload": <base64 snapshot or encryption envelope>}

The BackupOperation checksum covers the stored document bytes and is checked
before anything is decrypted or written. BackupOperation rows are written in
their own short transactions and are never part of a snapshot, so a restore
cannot rewrite the manager's own history, and restore outcomes are kept there.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter
from pydantic_core import to_jsonable_python
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from issuance import audit
from issuance.config import Settings
from issuance.exceptions import (
    BackupNotFoundError,
    BackupNotRestorableError,
    IntegrityCheckError,
    StorageError,
)
from issuance.integrity import (
    EncryptionSettings,
    checksum,
    decrypt_bytes,
    encrypt_bytes,
    generate_token,
    verify_checksum,
)
from issuance.models.access_code import AccessCode
from issuance.models.backup_operation import BackupOperation
from issuance.models.certificate import IssuedCertificate
from issuance.models.enums import AuditAction, BackupStatus, BackupType
from issuance.models.issuance_log import IssuanceLog
from issuance.models.template import CertificateTemplate
from issuance.storage import BlobStore
from shared.database.types import epoch_millis, utcnow

logger = logging.getLogger(__name__)

BACKUP_FORMAT = "shahadati-backup"
BACKUP_VERSION = 1
DEFAULT_HISTORY_LIMIT = 50

SessionFactory = async_sessionmaker[AsyncSession]


class CompressionLevel(str, Enum):
    FAST = "fast"
    NORMAL = "normal"
    MAXIMUM = "maximum"


class BackupFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


_ZLIB_LEVELS = {
    CompressionLevel.FAST: 1,
    CompressionLevel.NORMAL: 6,
    CompressionLevel.MAXIMUM: 9,
}


class BackupSettings(BaseModel):
    """Backup configuration. Invalid values are rejected at construction."""

    model_config = ConfigDict(frozen=True)

    encryption_enabled: bool = True
    compression_level: CompressionLevel = CompressionLevel.NORMAL
    retention_days: int = Field(default=30, ge=1)
    frequency: BackupFrequency = BackupFrequency.DAILY
    location_prefix: str = "backups/"
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)

    @classmethod
    def from_settings(cls, settings: Settings) -> BackupSettings:
        return cls(
            encryption_enabled=settings.backup_encryption,
            compression_level=settings.backup_compression_level,
            retention_days=settings.backup_retention_days,
            frequency=settings.backup_frequency,
            location_prefix=settings.backup_prefix,
            encryption=EncryptionSettings(
                enabled=settings.backup_encryption,
                key_length=settings.encryption_key_length,
                iterations=settings.encryption_iterations,
                key=SecretStr(settings.encryption_key) if settings.encryption_key else None,
            ),
        )


@dataclass(frozen=True)
class SnapshotCollection:
    name: str
    model: type
    key: str
    changed_column: str


# Parents before children: inserts run in this order.
COLLECTIONS: tuple[SnapshotCollection, ...] = (
    SnapshotCollection("certificate_templates", CertificateTemplate, "template_id", "updated_at"),
    SnapshotCollection("access_codes", AccessCode, "code_id", "updated_at"),
    SnapshotCollection("issued_certificates", IssuedCertificate, "certificate_id", "issued_at"),
    SnapshotCollection("issuance_logs", IssuanceLog, "log_id", "created_at"),
)


@dataclass(frozen=True)
class ItemError:
    target: str
    message: str


@dataclass
class RestoreResult:
    restored_count: int = 0
    errors: list[ItemError] = field(default_factory=list)


@dataclass
class CleanupResult:
    deleted_count: int = 0
    errors: list[ItemError] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def _row_to_dict(obj: Any) -> dict[str, Any]:
    columns = obj.__table__.columns
    return to_jsonable_python({c.key: getattr(obj, c.key) for c in columns})


@lru_cache(maxsize=None)
def _column_adapter(model: type, column_key: str) -> TypeAdapter | None:
    column = model.__table__.columns[column_key]
    try:
        return TypeAdapter(column.type.python_type)
    except NotImplementedError:
        return None


def _dict_to_row(model: type, data: dict[str, Any]) -> Any:
    values: dict[str, Any] = {}
    for key, value in data.items():
        if key not in model.__table__.columns:
            continue
        adapter = _column_adapter(model, key)
        values[key] = value if value is None or adapter is None else adapter.validate_python(value)
    return model(**values)


def _compress(raw: bytes, level: CompressionLevel) -> tuple[bytes, str]:
    compressed = zlib.compress(raw, _ZLIB_LEVELS[level])
    if len(compressed) >= len(raw):
        return raw, "none"
    return compressed, "zlib"


def build_document(
    snapshot: dict[str, list[dict[str, Any]]],
    *,
    operation_id: str,
    backup_type: BackupType,
    created_at: datetime,
    since: datetime | None,
    settings: BackupSettings,
) -> tuple[bytes, float]:
    """Serialise a snapshot into stored bytes. Returns ``(document, compression_ratio)``."""
    raw = json.dumps({"collections": snapshot}, separators=(",", ":")).encode("utf-8")
    body, compression = _compress(raw, settings.compression_level)
    ratio = round(len(body) / len(raw), 6) if raw else 1.0

    if settings.encryption_enabled:
        payload = encrypt_bytes(body, settings=settings.encryption)
    else:
        payload = base64.b64encode(body).decode("ascii")

    document = {
        "format": BACKUP_FORMAT,
        "version": BACKUP_VERSION,
        "operation_id": operation_id,
        "type": backup_type.value,
        "created_at": to_jsonable_python(created_at),
        "since": to_jsonable_python(since),
        "compression": compression,
        "encrypted": settings.encryption_enabled,
        "payload": payload,
    }
    return json.dumps(document, separators=(",", ":")).encode("utf-8"), ratio


def read_document(data: bytes, settings: BackupSettings) -> dict[str, list[dict[str, Any]]]:
    """Inverse of :func:`build_document`. Any malformed input raises IntegrityCheckError."""
    try:
        document = json.loads(data)
    except ValueError as exc:
        raise IntegrityCheckError("Backup file is not valid JSON") from exc
    if not isinstance(document, dict) or document.get("format") != BACKUP_FORMAT:
        raise IntegrityCheckError("Not a backup document")

    payload = document.get("payload", "")
    if document.get("encrypted"):
        body = decrypt_bytes(payload, settings=settings.encryption)
    else:
        try:
            body = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise IntegrityCheckError("Backup payload is not valid base64") from exc

    if document.get("compression") == "zlib":
        try:
            body = zlib.decompress(body)
        except zlib.error as exc:
            raise IntegrityCheckError("Backup payload does not decompress") from exc

    try:
        snapshot = json.loads(body)["collections"]
    except (ValueError, KeyError, TypeError) as exc:
        raise IntegrityCheckError("Backup payload is not a snapshot") from exc
    return snapshot


def backup_file_name(operation_id: str, created_at: datetime) -> str:
    return f"backup_{operation_id}_{epoch_millis(created_at)}.json"


# ---------------------------------------------------------------------------
# Operation bookkeeping
# ---------------------------------------------------------------------------


async def _start_operation(
    session_factory: SessionFactory,
    backup_type: BackupType,
    since: datetime | None,
    encrypted: bool,
) -> BackupOperation:
    async with session_factory() as db:
        op = BackupOperation(
            operation_id=generate_token(16),
            timestamp=utcnow(),
            type=backup_type,
            status=BackupStatus.PENDING,
            encrypted=encrypted,
            since=since,
        )
        db.add(op)
        await db.commit()
        await db.execute(
            update(BackupOperation)
            .where(BackupOperation.operation_id == op.operation_id)
            .values(status=BackupStatus.RUNNING)
        )
        await db.commit()
        await db.refresh(op)
        return op


async def _finish_operation(
    session_factory: SessionFactory,
    operation_id: str,
    *,
    action: AuditAction,
    success: bool,
    details: dict[str, Any],
    **values: Any,
) -> BackupOperation:
    async with session_factory() as db:
        await db.execute(
            update(BackupOperation)
            .where(BackupOperation.operation_id == operation_id)
            .values(**values)
        )
        await audit.record(db, action, success=success, details=details)
        await db.commit()
        op = await db.get(BackupOperation, operation_id, populate_existing=True)
        return op


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


async def take_snapshot(
    session_factory: SessionFactory,
    since: datetime | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """Read every collection inside one transaction so the snapshot is consistent."""
    snapshot: dict[str, list[dict[str, Any]]] = {}
    async with session_factory() as db:
        if db.bind.dialect.name == "postgresql":
            await db.connection(execution_options={"isolation_level": "REPEATABLE READ"})
        for collection in COLLECTIONS:
            stmt = select(collection.model).order_by(getattr(collection.model, collection.key))
            if since is not None:
                stmt = stmt.where(getattr(collection.model, collection.changed_column) >= since)
            rows = (await db.execute(stmt)).scalars().all()
            snapshot[collection.name] = [_row_to_dict(row) for row in rows]
        await db.rollback()
    return snapshot


# ---------------------------------------------------------------------------
# Backup creation
# ---------------------------------------------------------------------------


async def _create_backup(
    session_factory: SessionFactory,
    blob_store: BlobStore,
    settings: BackupSettings,
    backup_type: BackupType,
    since: datetime | None,
) -> BackupOperation:
    started = time.perf_counter()
    op = await _start_operation(session_factory, backup_type, since, settings.encryption_enabled)
    logger.info("Backup %s (%s) started", op.operation_id, backup_type.value)

    try:
        snapshot = await take_snapshot(session_factory, since)
        entity_count = sum(len(rows) for rows in snapshot.values())
        document, ratio = build_document(
            snapshot,
            operation_id=op.operation_id,
            backup_type=backup_type,
            created_at=op.timestamp,
            since=since,
            settings=settings,
        )
        prefix = settings.location_prefix.rstrip("/")
        location = f"{prefix}/{backup_file_name(op.operation_id, op.timestamp)}"
        await blob_store.put(document, location)
    except Exception as exc:
        duration = time.perf_counter() - started
        logger.error("Backup %s failed after %.2fs: %s", op.operation_id, duration, exc)
        await _finish_operation(
            session_factory,
            op.operation_id,
            action=AuditAction.BACKUP_FAILED,
            success=False,
            details={
                "operation_id": op.operation_id,
                "type": backup_type.value,
                "error": type(exc).__name__,
                "message": str(exc)[:500],
            },
            status=BackupStatus.FAILED,
            duration_seconds=duration,
            error_message=str(exc)[:2000],
        )
        raise

    duration = time.perf_counter() - started
    finished = await _finish_operation(
        session_factory,
        op.operation_id,
        action=AuditAction.BACKUP_COMPLETED,
        success=True,
        details={
            "operation_id": op.operation_id,
            "type": backup_type.value,
            "entity_count": entity_count,
            "size_bytes": len(document),
        },
        status=BackupStatus.COMPLETED,
        size_bytes=len(document),
        duration_seconds=duration,
        entity_count=entity_count,
        compression_ratio=ratio,
        storage_location=location,
        checksum=checksum(document),
    )
    logger.info(
        "Backup %s completed: %s entities, %s bytes, ratio %.3f, %.2fs",
        op.operation_id,
        entity_count,
        len(document),
        ratio,
        duration,
    )
    return finished


async def create_full_backup(
    session_factory: SessionFactory,
    blob_store: BlobStore,
    settings: BackupSettings,
) -> BackupOperation:
    return await _create_backup(session_factory, blob_store, settings, BackupType.FULL, None)


async def create_incremental_backup(
    session_factory: SessionFactory,
    blob_store: BlobStore,
    since: datetime,
    settings: BackupSettings,
) -> BackupOperation:
    """Back up rows changed at or after ``since``. An empty delta still completes."""
    return await _create_backup(
        session_factory, blob_store, settings, BackupType.INCREMENTAL, since
    )


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------


async def _restore_collection(
    db: AsyncSession,
    collection: SnapshotCollection,
    rows: list[dict[str, Any]],
    *,
    replace_all: bool,
) -> int:
    objects = [_dict_to_row(collection.model, row) for row in rows]
    async with db.begin_nested():
        if replace_all:
            await db.execute(
                delete(collection.model).execution_options(synchronize_session=False)
            )
            db.add_all(objects)
        else:
            for obj in objects:
                await db.merge(obj)
        await db.flush()
    db.expunge_all()
    return len(objects)


async def restore(
    session_factory: SessionFactory,
    blob_store: BlobStore,
    operation_id: str,
    settings: BackupSettings,
    *,
    verify_integrity: bool = True,
) -> RestoreResult:
    """Restore the snapshot written by ``operation_id``.

    A full backup replaces each collection wholesale; an incremental one
    replaces only the rows it holds. Collections are restored independently:
    a failure is recorded in ``errors`` and the rest carry on. A checksum
    mismatch raises IntegrityCheckError before any data is touched.

    The outcome is recorded on the BackupOperation row. After a full restore
    each collection holds exactly the snapshot rows, audit trail included.
    """
    async with session_factory() as db:
        op = await db.get(BackupOperation, operation_id)
        if op is None:
            raise BackupNotFoundError(operation_id)
        if op.status != BackupStatus.COMPLETED:
            raise BackupNotRestorableError(operation_id, op.status.value)
        location, expected, backup_type = op.storage_location, op.checksum, op.type

    data = await blob_store.get(location)
    if verify_integrity and not verify_checksum(data, expected):
        logger.error("Backup %s checksum mismatch; restore aborted", operation_id)
        raise IntegrityCheckError(f"Checksum mismatch for backup {operation_id}")
    snapshot = read_document(data, settings)

    result = RestoreResult()
    replace_all = backup_type == BackupType.FULL
    async with session_factory() as db:
        for collection in COLLECTIONS:
            rows = snapshot.get(collection.name, [])
            try:
                result.restored_count += await _restore_collection(
                    db, collection, rows, replace_all=replace_all
                )
            except Exception as exc:
                logger.warning(
                    "Restoring %s from backup %s failed: %s",
                    collection.name,
                    operation_id,
                    exc,
                    exc_info=True,
                )
                result.errors.append(ItemError(collection.name, str(exc)[:500]))
        await db.commit()

    async with session_factory() as db:
        await db.execute(
            update(BackupOperation)
            .where(BackupOperation.operation_id == operation_id)
            .values(
                restore_count=BackupOperation.restore_count + 1,
                last_restored_at=utcnow(),
                last_restore_errors=[e.target for e in result.errors] or None,
            )
        )
        await db.commit()

    logger.info(
        "Restored backup %s: %s rows, %s collection errors",
        operation_id,
        result.restored_count,
        len(result.errors),
    )
    return result


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


async def cleanup_old_backups(
    session_factory: SessionFactory,
    blob_store: BlobStore,
    retention_days: int,
    *,
    now: datetime | None = None,
) -> CleanupResult:
    """Delete completed backups with ``timestamp < now - retention_days``.

    A backup exactly at the cutoff is kept. Each backup is handled on its
    own; a failure is recorded and the next one is still tried.
    """
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    async with session_factory() as db:
        stmt = select(BackupOperation.operation_id, BackupOperation.storage_location).where(
            BackupOperation.status == BackupStatus.COMPLETED,
            BackupOperation.timestamp < cutoff,
        )
        candidates = (await db.execute(stmt)).all()

    result = CleanupResult()
    for operation_id, location in candidates:
        try:
            if location:
                await blob_store.delete(location)
            async with session_factory() as db:
                await db.execute(
                    delete(BackupOperation).where(BackupOperation.operation_id == operation_id)
                )
                await db.commit()
        except StorageError as exc:
            logger.warning("Pruning backup %s failed: %s", operation_id, exc)
            result.errors.append(ItemError(operation_id, str(exc)))
            continue
        except Exception as exc:
            logger.error("Pruning backup %s failed", operation_id, exc_info=True)
            result.errors.append(ItemError(operation_id, str(exc)[:500]))
            continue
        result.deleted_count += 1

    async with session_factory() as db:
        await audit.record(
            db,
            AuditAction.BACKUPS_PRUNED,
            success=not result.errors,
            details={
                "retention_days": retention_days,
                "cutoff": to_jsonable_python(cutoff),
                "deleted_count": result.deleted_count,
                "errors": [e.target for e in result.errors],
            },
        )
        await db.commit()
    logger.info(
        "Pruned %s backups older than %s (%s errors)",
        result.deleted_count,
        cutoff.isoformat(),
        len(result.errors),
    )
    return result


# ---------------------------------------------------------------------------
# History and stats
# ---------------------------------------------------------------------------


async def get_backup_history(
    db: AsyncSession,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[BackupOperation]:
    stmt = select(BackupOperation).order_by(BackupOperation.timestamp.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_backup(db: AsyncSession, operation_id: str) -> BackupOperation:
    op = await db.get(BackupOperation, operation_id)
    if op is None:
        raise BackupNotFoundError(operation_id)
    return op


async def get_backup_stats(db: AsyncSession) -> dict:
    total = await db.scalar(select(func.count()).select_from(BackupOperation))
    failed = await db.scalar(
        select(func.count())
        .select_from(BackupOperation)
        .where(BackupOperation.status == BackupStatus.FAILED)
    )
    completed_row = (
        await db.execute(
            select(
                func.count(),
                func.coalesce(func.sum(BackupOperation.size_bytes), 0),
                func.avg(BackupOperation.duration_seconds),
                func.max(BackupOperation.timestamp),
            ).where(BackupOperation.status == BackupStatus.COMPLETED)
        )
    ).one()
    completed, total_size, avg_duration, last_at = completed_row
    return {
        "total_backups": total or 0,
        "completed_backups": completed or 0,
        "failed_backups": failed or 0,
        "total_size_bytes": int(total_size or 0),
        "average_duration_seconds": float(avg_duration) if avg_duration is not None else None,
        "last_backup_at": last_at,
    }


async def last_completed_at(db: AsyncSession) -> datetime | None:
    """Timestamp of the newest completed backup; the natural ``since`` for an incremental."""
    return await db.scalar(
        select(func.max(BackupOperation.timestamp)).where(
            BackupOperation.status == BackupStatus.COMPLETED
        )
    )
