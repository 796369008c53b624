from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base
from shared.database.types import UTCDateTime, utcnow

from .enums import BackupStatus, BackupType, backup_status_enum, backup_type_enum


class BackupOperation(Base):
    """Point-in-time snapshot record. Owned exclusively by the backup manager."""

    __tablename__ = "backup_operations"

    operation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    type: Mapped[BackupType] = mapped_column(backup_type_enum, nullable=False)
    status: Mapped[BackupStatus] = mapped_column(
        backup_status_enum, nullable=False, default=BackupStatus.PENDING
    )
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    entity_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compression_ratio: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    storage_location: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    checksum: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Lower bound of an incremental snapshot
    since: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Restore outcomes live here, outside the snapshotted collections
    restore_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_restored_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_restore_errors: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_backup_operations_timestamp", "timestamp"),
        Index("ix_backup_operations_status", "status"),
    )
