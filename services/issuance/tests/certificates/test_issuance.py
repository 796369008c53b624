import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from issuance.certificates.minting import CERTIFICATE_NUMBER_RE, hash_for_certificate
from issuance.certificates.pdf_generator import ReportLabRenderer
from issuance.certificates.service import (
    IssuanceRequest,
    certificate_path,
    check_request,
    get_certificate,
    issue_certificate,
    verify_certificate,
)
from issuance.exceptions import (
    AccessCodeDisabledError,
    AccessCodeExhaustedError,
    AccessCodeNotFoundError,
    CertificateNotFoundError,
    InvalidIssuanceRequestError,
    NumberingExhaustedError,
    RenderError,
    StorageError,
)
from issuance.models.access_code import AccessCode
from issuance.models.certificate import IssuedCertificate
from issuance.models.enums import AccessCodeStatus, AuditAction
from issuance.models.issuance_log import IssuanceLog


class FailingRenderer:
    def render(self, data) -> bytes:
        raise RenderError("template asset missing")


class FailingBlobStore:
    async def put(self, data: bytes, path: str) -> str:
        raise StorageError("put", path, "bucket unavailable")

    async def get(self, path: str) -> bytes:
        raise StorageError("get", path, "bucket unavailable")

    async def delete(self, path: str) -> None:
        raise StorageError("delete", path, "bucket unavailable")


def _request(template, code, **overrides) -> IssuanceRequest:
    values = {
        "template_id": template.template_id,
        "access_code_id": code.code_id,
        "student_name": "  Layla   Haddad ",
        "student_email": "layla@example.com",
        "custom_fields": {"Grade": "A"},
        "request_id": "req-1",
    }
    values.update(overrides)
    return IssuanceRequest(**values)


async def _audit_actions(db) -> list[AuditAction]:
    rows = await db.execute(select(IssuanceLog).order_by(IssuanceLog.created_at))
    return [row.action for row in rows.scalars()]


@pytest.mark.asyncio
async def test_issue_certificate(seed, db_session, settings, blob_store) -> None:
    template, code = await seed(usage_limit=2)

    result = await issue_certificate(
        db_session,
        _request(template, code),
        settings=settings,
        blob_store=blob_store,
        renderer=ReportLabRenderer(),
    )

    assert CERTIFICATE_NUMBER_RE.match(result.certificate_number)
    cert = await get_certificate(db_session, result.certificate_id)
    assert cert.student_name == "Layla Haddad"
    assert cert.verification_hash == result.verification_hash == hash_for_certificate(cert)
    assert cert.certificate_url == result.url
    assert cert.custom_fields == {"Grade": "A"}

    pdf = await blob_store.get(cert.storage_path)
    assert pdf.startswith(b"%PDF")

    code_row = await db_session.get(AccessCode, code.code_id, populate_existing=True)
    assert code_row.used_count == 1
    assert await _audit_actions(db_session) == [AuditAction.CERTIFICATE_GENERATED]


@pytest.mark.asyncio
async def test_rejected_code_has_no_side_effects(seed, db_session, settings, blob_store) -> None:
    template, code = await seed(status=AccessCodeStatus.DISABLED)

    with pytest.raises(AccessCodeDisabledError):
        await issue_certificate(
            db_session,
            _request(template, code),
            settings=settings,
            blob_store=blob_store,
            renderer=ReportLabRenderer(),
        )
    with pytest.raises(AccessCodeNotFoundError):
        await issue_certificate(
            db_session,
            _request(template, code, access_code_id=uuid.uuid4()),
            settings=settings,
            blob_store=blob_store,
            renderer=ReportLabRenderer(),
        )

    assert (await db_session.scalars(select(IssuedCertificate))).all() == []
    assert await _audit_actions(db_session) == []


@pytest.mark.asyncio
async def test_exhausted_code(seed, db_session, settings, blob_store) -> None:
    template, code = await seed(usage_limit=1)
    await issue_certificate(
        db_session,
        _request(template, code),
        settings=settings,
        blob_store=blob_store,
        renderer=ReportLabRenderer(),
    )
    with pytest.raises(AccessCodeExhaustedError):
        await issue_certificate(
            db_session,
            _request(template, code, student_name="Omar Saleh"),
            settings=settings,
            blob_store=blob_store,
            renderer=ReportLabRenderer(),
        )


@pytest.mark.asyncio
async def test_render_failure_keeps_use_consumed(seed, db_session, settings, blob_store) -> None:
    template, code = await seed(usage_limit=3)

    with pytest.raises(RenderError):
        await issue_certificate(
            db_session,
            _request(template, code),
            settings=settings,
            blob_store=blob_store,
            renderer=FailingRenderer(),
        )

    code_row = await db_session.get(AccessCode, code.code_id, populate_existing=True)
    assert code_row.used_count == 1
    assert (await db_session.scalars(select(IssuedCertificate))).all() == []
    log = (await db_session.scalars(select(IssuanceLog))).one()
    assert log.action == AuditAction.CERTIFICATE_GENERATION_FAILED
    assert log.success is False
    assert log.details["stage"] == "render"


@pytest.mark.asyncio
async def test_upload_failure_is_audited(seed, db_session, settings) -> None:
    template, code = await seed()

    with pytest.raises(StorageError):
        await issue_certificate(
            db_session,
            _request(template, code),
            settings=settings,
            blob_store=FailingBlobStore(),
            renderer=ReportLabRenderer(),
        )

    log = (await db_session.scalars(select(IssuanceLog))).one()
    assert log.details["stage"] == "upload"
    code_row = await db_session.get(AccessCode, code.code_id, populate_existing=True)
    assert code_row.used_count == 1


def _pin_numbers(monkeypatch, random_parts: list[str]) -> None:
    """Fix the clock and the random part so certificate numbers are predictable."""
    issued_at = datetime(2025, 3, 9, 14, 5, 7, 123000, tzinfo=timezone.utc)
    parts = iter(random_parts)
    monkeypatch.setattr("issuance.certificates.service._issue_timestamp", lambda: issued_at)
    monkeypatch.setattr(
        "issuance.certificates.minting.time.time_ns", lambda: 1741529107123 * 1_000_000
    )
    monkeypatch.setattr("issuance.certificates.minting.random_digits", lambda n: next(parts))


@pytest.mark.asyncio
async def test_taken_number_is_reminted(
    seed, db_session, settings, blob_store, monkeypatch
) -> None:
    template, code = await seed(usage_limit=3)
    _pin_numbers(monkeypatch, ["000001", "000001", "000002"])

    first = await issue_certificate(
        db_session,
        _request(template, code),
        settings=settings,
        blob_store=blob_store,
        renderer=ReportLabRenderer(),
    )
    second = await issue_certificate(
        db_session,
        _request(template, code, student_name="Omar Saleh"),
        settings=settings,
        blob_store=blob_store,
        renderer=ReportLabRenderer(),
    )

    assert first.certificate_number == "CERT-20250309-107123-000001"
    assert second.certificate_number == "CERT-20250309-107123-000002"
    cert = await get_certificate(db_session, second.certificate_id)
    assert cert.verification_hash == hash_for_certificate(cert)
    code_row = await db_session.get(AccessCode, code.code_id, populate_existing=True)
    assert code_row.used_count == 2


@pytest.mark.asyncio
async def test_numbering_exhausted_keeps_use_consumed(
    seed, db_session, settings, blob_store, monkeypatch
) -> None:
    template, code = await seed(usage_limit=3)
    _pin_numbers(monkeypatch, ["000001"] * (1 + settings.certificate_number_attempts))
    await issue_certificate(
        db_session,
        _request(template, code),
        settings=settings,
        blob_store=blob_store,
        renderer=ReportLabRenderer(),
    )

    with pytest.raises(NumberingExhaustedError) as exc_info:
        await issue_certificate(
            db_session,
            _request(template, code, student_name="Omar Saleh"),
            settings=settings,
            blob_store=blob_store,
            renderer=ReportLabRenderer(),
        )

    assert exc_info.value.attempts == settings.certificate_number_attempts
    assert len((await db_session.scalars(select(IssuedCertificate))).all()) == 1
    code_row = await db_session.get(AccessCode, code.code_id, populate_existing=True)
    assert code_row.used_count == 2
    failure = (
        await db_session.scalars(
            select(IssuanceLog).where(
                IssuanceLog.action == AuditAction.CERTIFICATE_GENERATION_FAILED
            )
        )
    ).one()
    assert failure.details["stage"] == "mint"
    assert failure.details["error"] == "NumberingExhaustedError"


@pytest.mark.asyncio
async def test_code_from_another_template(seed, db_session, settings, blob_store) -> None:
    template, _ = await seed()
    _, foreign_code = await seed()

    with pytest.raises(InvalidIssuanceRequestError):
        await issue_certificate(
            db_session,
            _request(template, foreign_code),
            settings=settings,
            blob_store=blob_store,
            renderer=ReportLabRenderer(),
        )
    code_row = await db_session.get(AccessCode, foreign_code.code_id, populate_existing=True)
    assert code_row.used_count == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"student_name": "A"},
        {"student_name": "x" * 101},
        {"student_email": "not-an-email"},
        {"custom_fields": {f"f{i}": "v" for i in range(11)}},
        {"custom_fields": {"": "v"}},
        {"custom_fields": {"k" * 51: "v"}},
        {"custom_fields": {"Note": "v" * 501}},
    ],
)
def test_check_request_rejects(overrides: dict) -> None:
    values = {
        "template_id": uuid.uuid4(),
        "access_code_id": uuid.uuid4(),
        "student_name": "Layla Haddad",
    }
    values.update(overrides)
    with pytest.raises(InvalidIssuanceRequestError):
        check_request(IssuanceRequest(**values))


def test_check_request_normalises() -> None:
    request = check_request(
        IssuanceRequest(
            template_id=uuid.uuid4(),
            access_code_id=uuid.uuid4(),
            student_name="  Layla \t Haddad ",
            student_email="",
        )
    )
    assert request.student_name == "Layla Haddad"
    assert request.student_email is None


def test_certificate_path(settings) -> None:
    issued_at = datetime(2025, 3, 9, 14, 5, 7, 123000, tzinfo=timezone.utc)
    template_id = uuid.UUID("aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa")
    path = certificate_path(settings, template_id, "Layla Haddad-Smith", issued_at)
    assert path == f"certificates/2025/3/{template_id}-1741529107123-Layla_Haddad_Smith.pdf"


@pytest.mark.asyncio
async def test_verify_certificate(seed, db_session, settings, blob_store) -> None:
    template, code = await seed()
    result = await issue_certificate(
        db_session,
        _request(template, code),
        settings=settings,
        blob_store=blob_store,
        renderer=ReportLabRenderer(),
    )

    ok = await verify_certificate(db_session, result.certificate_number)
    assert ok["is_valid"] is True
    assert ok["student_name"] == "Layla Haddad"
    with_hash = await verify_certificate(
        db_session, result.certificate_number, result.verification_hash.upper()
    )
    assert with_hash["is_valid"] is True

    wrong = await verify_certificate(db_session, result.certificate_number, "ab" * 32)
    assert wrong["is_valid"] is False
    unknown = await verify_certificate(db_session, "CERT-20000101-000000-000000")
    assert unknown["is_valid"] is False
    assert unknown["certificate_id"] is None


@pytest.mark.asyncio
async def test_tampered_record_fails_verification(seed, db_session, settings, blob_store) -> None:
    template, code = await seed()
    result = await issue_certificate(
        db_session,
        _request(template, code),
        settings=settings,
        blob_store=blob_store,
        renderer=ReportLabRenderer(),
    )
    cert = await get_certificate(db_session, result.certificate_id)
    cert.student_name = "Someone Else"
    await db_session.commit()

    verdict = await verify_certificate(db_session, result.certificate_number)
    assert verdict["is_valid"] is False


@pytest.mark.asyncio
async def test_get_certificate_not_found(db_session) -> None:
    with pytest.raises(CertificateNotFoundError):
        await get_certificate(db_session, uuid.uuid4())
