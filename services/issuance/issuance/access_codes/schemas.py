"""Access code domain Pydantic V2 schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from issuance.models.enums import AccessCodeRejection, AccessCodeStatus


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class AccessCodeCreate(BaseModel):
    usage_limit: int = Field(default=1, ge=1, le=100_000)
    expires_at: datetime | None = Field(
        default=None, description="After this instant the code is rejected as expired."
    )

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ResolveRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    link: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=32)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class AccessCodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code_id: UUID
    template_id: UUID
    code: str
    unique_link: str
    status: AccessCodeStatus
    expires_at: datetime | None = None
    usage_limit: int
    used_count: int
    remaining_uses: int
    created_at: datetime


class AccessCodeValidationResponse(BaseModel):
    valid: bool
    reason: AccessCodeRejection | None = None
    code_id: UUID
    status: AccessCodeStatus | None = None
    used_count: int | None = None
    usage_limit: int | None = None
    expires_at: datetime | None = None


class ResolveResponse(BaseModel):
    """What a student sees after entering a link and code."""

    valid: bool
    reason: AccessCodeRejection | None = None
    access_code_id: UUID | None = None
    template_id: UUID | None = None
    course_name: str | None = None
    organization_name: str | None = None
    remaining_uses: int | None = None
