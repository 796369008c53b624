"""Initial issuance tables

Revision ID: 001_initial_issuance
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_issuance"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum types are created explicitly below; columns must not re-create them
template_orientation = postgresql.ENUM(
    "landscape", "portrait", name="template_orientation", create_type=False
)
access_code_status = postgresql.ENUM(
    "active", "disabled", "expired", name="access_code_status", create_type=False
)
backup_type = postgresql.ENUM("full", "incremental", name="backup_type", create_type=False)
backup_status = postgresql.ENUM(
    "pending", "running", "completed", "failed", name="backup_status", create_type=False
)
audit_action = postgresql.ENUM(
    "certificate_generated",
    "certificate_generation_failed",
    "backup_completed",
    "backup_failed",
    "backups_pruned",
    name="audit_action",
    create_type=False,
)

_ENUMS = (
    template_orientation,
    access_code_status,
    backup_type,
    backup_status,
    audit_action,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "certificate_templates",
        sa.Column("template_id", sa.Uuid(), primary_key=True),
        sa.Column("instructor_id", sa.Uuid(), nullable=False),
        sa.Column("course_name", sa.String(300), nullable=False),
        sa.Column("course_description", sa.Text(), nullable=True),
        sa.Column("organization_name", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("name_x", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("name_y", sa.Float(), nullable=False, server_default="0.52"),
        sa.Column("font_size", sa.Integer(), nullable=False, server_default="32"),
        sa.Column("font_color", sa.String(7), nullable=False, server_default="#1f2937"),
        sa.Column(
            "orientation", template_orientation, nullable=False, server_default="landscape"
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
    )
    op.create_index(
        "ix_certificate_templates_instructor_id", "certificate_templates", ["instructor_id"]
    )

    op.create_table(
        "access_codes",
        sa.Column("code_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Uuid(),
            sa.ForeignKey("certificate_templates.template_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("unique_link", sa.String(64), nullable=False, unique=True),
        sa.Column("status", access_code_status, nullable=False, server_default="active"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.CheckConstraint("usage_limit > 0", name="ck_access_codes_usage_limit_positive"),
        sa.CheckConstraint("used_count >= 0", name="ck_access_codes_used_count_non_negative"),
        sa.CheckConstraint("used_count <= usage_limit", name="ck_access_codes_used_within_limit"),
    )
    op.create_index("ix_access_codes_template_id", "access_codes", ["template_id"])

    op.create_table(
        "issued_certificates",
        sa.Column("certificate_id", sa.Uuid(), primary_key=True),
        sa.Column("certificate_number", sa.String(40), nullable=False, unique=True),
        sa.Column("verification_hash", sa.String(64), nullable=False),
        sa.Column(
            "template_id",
            sa.Uuid(),
            sa.ForeignKey("certificate_templates.template_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "access_code_id",
            sa.Uuid(),
            sa.ForeignKey("access_codes.code_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("student_id", sa.Uuid(), nullable=True),
        sa.Column("student_name", sa.String(200), nullable=False),
        sa.Column("student_email", sa.String(320), nullable=True),
        sa.Column("certificate_url", sa.String(1000), nullable=False),
        sa.Column("storage_path", sa.String(500), nullable=False),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column(
            "issued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
    )
    op.create_index(
        "ix_issued_certificates_access_code_id", "issued_certificates", ["access_code_id"]
    )
    op.create_index("ix_issued_certificates_template_id", "issued_certificates", ["template_id"])
    op.create_index("ix_issued_certificates_issued_at", "issued_certificates", ["issued_at"])

    op.create_table(
        "backup_operations",
        sa.Column("operation_id", sa.String(64), primary_key=True),
        sa.Column(
            "timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column("type", backup_type, nullable=False),
        sa.Column("status", backup_status, nullable=False, server_default="pending"),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("duration_seconds", sa.Float(), nullable=False, server_default="0"),
        sa.Column("entity_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("compression_ratio", sa.Float(), nullable=False, server_default="1"),
        sa.Column("storage_location", sa.String(500), nullable=False, server_default=""),
        sa.Column("checksum", sa.String(64), nullable=False, server_default=""),
        sa.Column("encrypted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("restore_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_restored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_restore_errors", sa.JSON(), nullable=True),
    )
    op.create_index("ix_backup_operations_timestamp", "backup_operations", ["timestamp"])
    op.create_index("ix_backup_operations_status", "backup_operations", ["status"])

    op.create_table(
        "issuance_logs",
        sa.Column("log_id", sa.Uuid(), primary_key=True),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
    )
    op.create_index("ix_issuance_logs_created_at", "issuance_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("issuance_logs")
    op.drop_table("backup_operations")
    op.drop_table("issued_certificates")
    op.drop_table("access_codes")
    op.drop_table("certificate_templates")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
