"""Backup domain Pydantic V2 schemas."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from issuance.models.enums import BackupStatus, BackupType


class IncrementalBackupRequest(BaseModel):
    since: datetime = Field(description="Rows changed at or after this instant are included.")

    @field_validator("since")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class RestoreRequest(BaseModel):
    verify_integrity: bool = True


class CleanupRequest(BaseModel):
    retention_days: int | None = Field(
        default=None, ge=1, description="Defaults to the configured retention."
    )


class BackupOperationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    operation_id: str
    timestamp: datetime
    type: BackupType
    status: BackupStatus
    size_bytes: int
    duration_seconds: float
    entity_count: int
    compression_ratio: float
    storage_location: str
    checksum: str
    encrypted: bool
    since: datetime | None = None
    error_message: str | None = None
    restore_count: int = 0
    last_restored_at: datetime | None = None
    last_restore_errors: list[str] | None = None


class ItemErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    target: str
    message: str


class RestoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    restored_count: int
    errors: list[ItemErrorResponse]


class CleanupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    deleted_count: int
    errors: list[ItemErrorResponse]


class BackupStatsResponse(BaseModel):
    total_backups: int
    completed_backups: int
    failed_backups: int
    total_size_bytes: int
    average_duration_seconds: float | None = None
    last_backup_at: datetime | None = None
