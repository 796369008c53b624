"""Certificate domain Pydantic V2 schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class RedeemRequest(BaseModel):
    """Request body for redeeming an access code into a certificate."""

    model_config = ConfigDict(str_strip_whitespace=True)

    template_id: UUID
    access_code_id: UUID
    student_name: str = Field(
        min_length=2,
        max_length=100,
        description="Full name as it should appear on the PDF.",
    )
    student_email: EmailStr | None = None
    custom_fields: dict[str, Any] = Field(
        default_factory=dict,
        description="Up to 10 extra lines printed on the certificate.",
    )
    include_qr: bool = Field(default=True, description="Embed the verification QR code.")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class IssuanceResponse(BaseModel):
    certificate_id: UUID
    certificate_number: str
    verification_hash: str
    url: str


class CertificateResponse(BaseModel):
    """Certificate record returned on retrieval."""

    model_config = ConfigDict(from_attributes=True)

    certificate_id: UUID
    certificate_number: str
    verification_hash: str
    template_id: UUID
    access_code_id: UUID
    student_name: str
    certificate_url: str = Field(description="URL of the stored PDF.")
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    issued_at: datetime
    verification_url: str | None = None


class CertificateVerifyResponse(BaseModel):
    """Public verification result (accessed via QR code scan)."""

    is_valid: bool
    certificate_id: UUID | None = None
    certificate_number: str
    student_name: str | None = None
    template_id: UUID | None = None
    issued_at: datetime | None = None
