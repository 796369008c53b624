"""Template domain Pydantic V2 schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from issuance.models.enums import TemplateOrientation


class TemplateCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    course_name: str = Field(min_length=1, max_length=300)
    course_description: str | None = Field(default=None, max_length=2000)
    organization_name: str | None = Field(default=None, max_length=200)
    name_x: float = Field(
        default=0.5, ge=0, le=1, description="Horizontal centre of the name, fraction of page width."
    )
    name_y: float = Field(
        default=0.52, ge=0, le=1, description="Baseline of the name, fraction of page height."
    )
    font_size: int = Field(default=32, ge=8, le=96)
    font_color: str = Field(default="#1f2937", pattern=r"^#[0-9a-fA-F]{6}$")
    orientation: TemplateOrientation = TemplateOrientation.LANDSCAPE


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    template_id: UUID
    instructor_id: UUID
    course_name: str
    course_description: str | None = None
    organization_name: str | None = None
    is_active: bool
    name_x: float
    name_y: float
    font_size: int
    font_color: str
    orientation: TemplateOrientation
    created_at: datetime
