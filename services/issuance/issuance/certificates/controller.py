"""Certificate controller — maps service results to HTTP responses."""

from __future__ import annotations

from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.certificates import service
from issuance.certificates.pdf_generator import TemplateRenderer
from issuance.certificates.schemas import (
    CertificateResponse,
    CertificateVerifyResponse,
    IssuanceResponse,
    RedeemRequest,
)
from issuance.config import Settings
from issuance.exceptions import (
    AccessCodeExhaustedError,
    AccessCodeNotFoundError,
    AccessCodeRejectedError,
    CertificateNotFoundError,
    EntropyError,
    InvalidIssuanceRequestError,
    NumberingExhaustedError,
    RenderError,
    StorageError,
    TemplateNotFoundError,
)
from issuance.storage import BlobStore


def _handle_domain_error(exc: Exception) -> HTTPException | None:
    if isinstance(exc, InvalidIssuanceRequestError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.detail)
    if isinstance(exc, AccessCodeRejectedError):
        if isinstance(exc, AccessCodeExhaustedError):
            code = status.HTTP_409_CONFLICT
        elif isinstance(exc, AccessCodeNotFoundError):
            code = status.HTTP_404_NOT_FOUND
        else:
            code = status.HTTP_403_FORBIDDEN
        return HTTPException(status_code=code, detail=exc.reason.value)
    if isinstance(exc, (TemplateNotFoundError, CertificateNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, NumberingExhaustedError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not allocate a certificate number.",
        )
    if isinstance(exc, (StorageError, RenderError)):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Certificate could not be produced. The access code use has been spent.",
        )
    if isinstance(exc, EntropyError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    return None


def _with_verification_url(cert, settings: Settings) -> CertificateResponse:
    resp = CertificateResponse.model_validate(cert)
    resp.verification_url = service.verification_url(
        settings, cert.certificate_number, cert.verification_hash
    )
    return resp


async def redeem(
    db: AsyncSession,
    body: RedeemRequest,
    *,
    settings: Settings,
    blob_store: BlobStore,
    renderer: TemplateRenderer,
    student_id: UUID | None,
    request_id: str | None,
    ip_address: str | None,
    user_agent: str | None,
) -> IssuanceResponse:
    request = service.IssuanceRequest(
        template_id=body.template_id,
        access_code_id=body.access_code_id,
        student_name=body.student_name,
        student_email=body.student_email,
        custom_fields=body.custom_fields,
        include_qr=body.include_qr,
        student_id=student_id,
        request_id=request_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        result = await service.issue_certificate(
            db, request, settings=settings, blob_store=blob_store, renderer=renderer
        )
    except Exception as exc:
        mapped = _handle_domain_error(exc)
        if mapped is None:
            raise
        raise mapped from exc
    return IssuanceResponse(
        certificate_id=result.certificate_id,
        certificate_number=result.certificate_number,
        verification_hash=result.verification_hash,
        url=result.url,
    )


async def get_certificate(
    db: AsyncSession,
    certificate_id: UUID,
    settings: Settings,
) -> CertificateResponse:
    try:
        cert = await service.get_certificate(db, certificate_id)
    except CertificateNotFoundError as exc:
        raise _handle_domain_error(exc) from exc
    return _with_verification_url(cert, settings)


async def verify_certificate(
    db: AsyncSession,
    certificate_number: str,
    verification_hash: str | None,
) -> CertificateVerifyResponse:
    result = await service.verify_certificate(db, certificate_number, verification_hash)
    return CertificateVerifyResponse(**result)
