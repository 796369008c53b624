"""Issuance orchestrator — redeem an access code into a stored certificate.

Pure business logic, no FastAPI imports.

Steps: check the request, validate the code, consume one use, mint the number
and hash, render the PDF, store it, write the record. A number that is
already taken trips the unique index on insert; minting, rendering and
storing then repeat with fresh randomness, up to
`certificate_number_attempts` times.

The consumption is committed on its own before anything downstream runs, so
a failure in rendering, upload or the final insert leaves the use spent. The
failure is recorded in the audit trail and re-raised.
"""

from __future__ import annotations

import hmac
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from issuance import audit
from issuance.access_codes import service as ledger
from issuance.certificates.minting import (
    MintInput,
    hash_for_certificate,
    is_number_collision,
    mint,
)
from issuance.certificates.pdf_generator import CertificatePDFData, TemplateRenderer
from issuance.config import Settings
from issuance.exceptions import (
    CertificateNotFoundError,
    InvalidIssuanceRequestError,
    NumberingExhaustedError,
    StorageError,
    rejection_error,
)
from issuance.models.certificate import IssuedCertificate
from issuance.models.enums import AuditAction
from issuance.storage import BlobStore
from issuance.templates.service import get_active_template
from shared.database.types import epoch_millis, utcnow

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
MAX_CUSTOM_FIELDS = 10
MAX_CUSTOM_FIELD_KEY = 50
MAX_CUSTOM_FIELD_VALUE = 500

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class IssuanceRequest:
    template_id: UUID
    access_code_id: UUID
    student_name: str
    student_email: str | None = None
    custom_fields: dict[str, str] = field(default_factory=dict)
    include_qr: bool = True
    student_id: UUID | None = None
    request_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class IssuanceResult:
    certificate_id: UUID
    certificate_number: str
    verification_hash: str
    url: str


# ---------------------------------------------------------------------------
# Request checks (no side effects)
# ---------------------------------------------------------------------------


def check_request(request: IssuanceRequest) -> IssuanceRequest:
    """Return a normalised copy of ``request`` or raise InvalidIssuanceRequestError."""
    name = " ".join(request.student_name.split())
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise InvalidIssuanceRequestError(
            f"student_name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters"
        )

    email = request.student_email
    if email:
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise InvalidIssuanceRequestError(f"student_email: {exc}") from exc

    fields = request.custom_fields or {}
    if len(fields) > MAX_CUSTOM_FIELDS:
        raise InvalidIssuanceRequestError(f"at most {MAX_CUSTOM_FIELDS} custom fields allowed")
    for key, value in fields.items():
        if not key or len(key) > MAX_CUSTOM_FIELD_KEY:
            raise InvalidIssuanceRequestError(
                f"custom field names must be 1-{MAX_CUSTOM_FIELD_KEY} characters"
            )
        if not isinstance(value, str) or len(value) > MAX_CUSTOM_FIELD_VALUE:
            raise InvalidIssuanceRequestError(
                f"custom field {key!r} must be text of at most {MAX_CUSTOM_FIELD_VALUE} characters"
            )

    return IssuanceRequest(
        template_id=request.template_id,
        access_code_id=request.access_code_id,
        student_name=name,
        student_email=email or None,
        custom_fields=dict(fields),
        include_qr=request.include_qr,
        student_id=request.student_id,
        request_id=request.request_id,
        ip_address=request.ip_address,
        user_agent=request.user_agent,
    )


def certificate_path(settings: Settings, template_id: UUID, student_name: str, issued_at: datetime) -> str:
    """``certificates/<YYYY>/<M>/<templateId>-<epochMillis>-<name>.pdf``."""
    safe_name = _UNSAFE_FILENAME_CHARS.sub("_", student_name)[:NAME_MAX_LENGTH]
    epoch_ms = epoch_millis(issued_at)
    prefix = settings.certificate_prefix.rstrip("/")
    return f"{prefix}/{issued_at.year}/{issued_at.month}/{template_id}-{epoch_ms}-{safe_name}.pdf"


def verification_url(settings: Settings, certificate_number: str, verification_hash: str) -> str:
    return f"{settings.verification_base_url.rstrip('/')}/{certificate_number}?h={verification_hash}"


def _issue_timestamp() -> datetime:
    # Millisecond precision, matching the hash's timestamp rendering
    now = utcnow()
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


# ---------------------------------------------------------------------------
# Redemption
# ---------------------------------------------------------------------------


async def issue_certificate(
    db: AsyncSession,
    request: IssuanceRequest,
    *,
    settings: Settings,
    blob_store: BlobStore,
    renderer: TemplateRenderer,
) -> IssuanceResult:
    """Redeem ``request.access_code_id`` and produce a stored certificate.

    Ledger rejections raise the matching ``AccessCodeRejectedError`` subclass
    before any side effect.
    """
    started = time.perf_counter()
    request = check_request(request)

    validation = await ledger.validate(db, request.access_code_id)
    if not validation.valid:
        raise rejection_error(validation.reason, str(request.access_code_id))
    if validation.access_code.template_id != request.template_id:
        raise InvalidIssuanceRequestError("access code does not belong to this template")
    template = await get_active_template(db, request.template_id)

    consumed = await ledger.consume_once(db, request.access_code_id)
    if not consumed.success:
        await db.rollback()
        raise rejection_error(consumed.reason, str(request.access_code_id))
    await db.commit()

    stage = "mint"
    try:
        issued_at = _issue_timestamp()
        path = certificate_path(settings, request.template_id, request.student_name, issued_at)
        mint_input = MintInput(
            student_name=request.student_name,
            template_id=request.template_id,
            access_code_id=request.access_code_id,
            issued_at=issued_at,
        )
        attempts = settings.certificate_number_attempts
        for attempt in range(1, attempts + 1):
            stage = "mint"
            minted = mint(mint_input)

            stage = "render"
            document = renderer.render(
                CertificatePDFData(
                    student_name=request.student_name,
                    course_name=template.course_name,
                    issued_at=issued_at,
                    certificate_number=minted.certificate_number,
                    verification_url=verification_url(
                        settings, minted.certificate_number, minted.verification_hash
                    ),
                    organization_name=template.organization_name,
                    course_description=template.course_description,
                    custom_fields=request.custom_fields,
                    name_x=template.name_x,
                    name_y=template.name_y,
                    font_size=template.font_size,
                    font_color=template.font_color,
                    orientation=template.orientation,
                    include_qr=request.include_qr,
                )
            )

            stage = "upload"
            url = await blob_store.put(document, path)

            stage = "record"
            cert = IssuedCertificate(
                certificate_number=minted.certificate_number,
                verification_hash=minted.verification_hash,
                template_id=request.template_id,
                access_code_id=request.access_code_id,
                student_id=request.student_id,
                student_name=request.student_name,
                student_email=request.student_email,
                certificate_url=url,
                storage_path=path,
                custom_fields=request.custom_fields,
                request_id=request.request_id,
                ip_address=request.ip_address,
                user_agent=request.user_agent,
                issued_at=issued_at,
            )
            try:
                async with db.begin_nested():
                    db.add(cert)
                    await db.flush()
            except IntegrityError as exc:
                if not is_number_collision(exc):
                    raise StorageError("insert", minted.certificate_number, str(exc.orig)) from exc
                # The PDF at ``path`` is overwritten by the next attempt
                logger.warning(
                    "Certificate number %s already taken (attempt %s/%s)",
                    minted.certificate_number,
                    attempt,
                    attempts,
                )
                continue
            break
        else:
            stage = "mint"
            raise NumberingExhaustedError(attempts)

        elapsed_ms = round((time.perf_counter() - started) * 1000)
        await audit.record(
            db,
            AuditAction.CERTIFICATE_GENERATED,
            success=True,
            details={
                "certificate_id": str(cert.certificate_id),
                "certificate_number": minted.certificate_number,
                "template_id": str(request.template_id),
                "access_code_id": str(request.access_code_id),
                "elapsed_ms": elapsed_ms,
            },
            request_id=request.request_id,
            ip_address=request.ip_address,
        )
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.error(
            "Issuance failed at %s (request=%s template=%s code=%s): %s",
            stage,
            request.request_id,
            request.template_id,
            request.access_code_id,
            exc,
        )
        await audit.record(
            db,
            AuditAction.CERTIFICATE_GENERATION_FAILED,
            success=False,
            details={
                "stage": stage,
                "error": type(exc).__name__,
                "message": str(exc)[:500],
                "template_id": str(request.template_id),
                "access_code_id": str(request.access_code_id),
            },
            request_id=request.request_id,
            ip_address=request.ip_address,
        )
        await db.commit()
        raise

    logger.info(
        "Issued certificate %s (request=%s template=%s code=%s) in %sms",
        minted.certificate_number,
        request.request_id,
        request.template_id,
        request.access_code_id,
        elapsed_ms,
    )
    return IssuanceResult(
        certificate_id=cert.certificate_id,
        certificate_number=minted.certificate_number,
        verification_hash=minted.verification_hash,
        url=url,
    )


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


async def get_certificate(db: AsyncSession, certificate_id: UUID) -> IssuedCertificate:
    cert = await db.get(IssuedCertificate, certificate_id)
    if cert is None:
        raise CertificateNotFoundError(str(certificate_id))
    return cert


# ---------------------------------------------------------------------------
# Public verification
# ---------------------------------------------------------------------------


async def verify_certificate(
    db: AsyncSession,
    certificate_number: str,
    verification_hash: str | None = None,
) -> dict:
    """Public verification, no auth required.

    Valid when the record exists, its stored hash matches one recomputed from
    the five bound fields, and the supplied hash (if any) matches too.
    """
    stmt = select(IssuedCertificate).where(
        IssuedCertificate.certificate_number == certificate_number
    )
    cert = (await db.execute(stmt)).scalar_one_or_none()

    if cert is None:
        return {
            "is_valid": False,
            "certificate_id": None,
            "certificate_number": certificate_number,
            "student_name": None,
            "template_id": None,
            "issued_at": None,
        }

    is_valid = hmac.compare_digest(
        cert.verification_hash.encode(), hash_for_certificate(cert).encode()
    )
    if verification_hash is not None:
        is_valid = is_valid and hmac.compare_digest(
            cert.verification_hash.encode(), verification_hash.strip().lower().encode()
        )

    return {
        "is_valid": is_valid,
        "certificate_id": cert.certificate_id,
        "certificate_number": cert.certificate_number,
        "student_name": cert.student_name,
        "template_id": cert.template_id,
        "issued_at": cert.issued_at,
    }
