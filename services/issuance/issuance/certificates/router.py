"""Certificate router — redemption, retrieval, and public verification."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from issuance.certificates import controller
from issuance.certificates.pdf_generator import TemplateRenderer
from issuance.certificates.schemas import (
    CertificateResponse,
    CertificateVerifyResponse,
    IssuanceResponse,
    RedeemRequest,
)
from issuance.config import Settings
from issuance.database import get_db
from issuance.dependencies import client_ip, get_blob_store, get_renderer, get_settings
from issuance.rate_limit import limiter, redeem_limit
from issuance.storage import BlobStore
from shared.auth.dependencies import get_current_user_optional
from shared.middleware.request_id import get_request_id
from shared.models.user import CurrentUser

router = APIRouter(prefix="/certificates", tags=["Certificates"])


@router.post(
    "/redeem",
    response_model=IssuanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Redeem an access code for a certificate",
    description="Public endpoint, rate limited per client IP. "
    "Consumes one use of the access code, renders the PDF, stores it "
    "and returns the certificate number and verification hash. "
    "A failure after the use is consumed does not refund it.",
)
@limiter.limit(redeem_limit)
async def redeem(
    request: Request,
    body: RedeemRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    blob_store: BlobStore = Depends(get_blob_store),
    renderer: TemplateRenderer = Depends(get_renderer),
    user: CurrentUser | None = Depends(get_current_user_optional),
) -> IssuanceResponse:
    return await controller.redeem(
        db,
        body,
        settings=settings,
        blob_store=blob_store,
        renderer=renderer,
        student_id=user.id if user else None,
        request_id=get_request_id(request),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.get(
    "/verify/{certificate_number}",
    response_model=CertificateVerifyResponse,
    summary="Verify a certificate (public)",
    description="Public endpoint — no authentication required. "
    "Recomputes the verification hash from the stored record; pass `hash` "
    "from the QR payload to check it as well.",
)
async def verify_certificate(
    certificate_number: str,
    verification_hash: str | None = Query(default=None, alias="hash", max_length=64),
    db: AsyncSession = Depends(get_db),
) -> CertificateVerifyResponse:
    return await controller.verify_certificate(db, certificate_number, verification_hash)


@router.get(
    "/{certificate_id}",
    response_model=CertificateResponse,
    summary="Get certificate by ID",
)
async def get_certificate(
    certificate_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CertificateResponse:
    return await controller.get_certificate(db, certificate_id, settings)
