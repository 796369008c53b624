import enum

from sqlalchemy import Enum as SAEnum


class AccessCodeStatus(str, enum.Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    EXPIRED = "expired"


class AccessCodeRejection(str, enum.Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    DISABLED = "disabled"
    EXHAUSTED = "exhausted"


class TemplateOrientation(str, enum.Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"


class BackupType(str, enum.Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class BackupStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditAction(str, enum.Enum):
    CERTIFICATE_GENERATED = "certificate_generated"
    CERTIFICATE_GENERATION_FAILED = "certificate_generation_failed"
    BACKUP_COMPLETED = "backup_completed"
    BACKUP_FAILED = "backup_failed"
    BACKUPS_PRUNED = "backups_pruned"


def _values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# Shared SQLAlchemy Enum instances (reuse across models to avoid duplicate type creation).
# Stored by value so the database holds the lowercase wire names.
access_code_status_enum = SAEnum(
    AccessCodeStatus, name="access_code_status", values_callable=_values
)
template_orientation_enum = SAEnum(
    TemplateOrientation, name="template_orientation", values_callable=_values
)
backup_type_enum = SAEnum(BackupType, name="backup_type", values_callable=_values)
backup_status_enum = SAEnum(BackupStatus, name="backup_status", values_callable=_values)
audit_action_enum = SAEnum(AuditAction, name="audit_action", values_callable=_values)
