import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from issuance.certificates.minting import (
    CERTIFICATE_NUMBER_RE,
    MintInput,
    build_certificate_number,
    compute_verification_hash,
    format_issued_at,
    is_number_collision,
    mint,
)

ISSUED_AT = datetime(2025, 3, 9, 14, 5, 7, 123456, tzinfo=timezone.utc)
TEMPLATE_ID = uuid.UUID("aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa")
CODE_ID = uuid.UUID("bbbbbbbb-bbbb-4bbb-8bbb-bbbbbbbbbbbb")


def test_format_issued_at() -> None:
    assert format_issued_at(ISSUED_AT) == "2025-03-09T14:05:07.123Z"
    assert format_issued_at(ISSUED_AT.replace(tzinfo=None)) == "2025-03-09T14:05:07.123Z"


def test_certificate_number_layout() -> None:
    number = build_certificate_number(ISSUED_AT, epoch_ms=1741529107123, random_part="004217")
    assert number == "CERT-20250309-107123-004217"
    assert CERTIFICATE_NUMBER_RE.match(build_certificate_number(ISSUED_AT))


def test_verification_hash_is_deterministic() -> None:
    args = ("CERT-20250309-107123-004217", "Layla Haddad", TEMPLATE_ID, CODE_ID, ISSUED_AT)
    digest = compute_verification_hash(*args)
    assert len(digest) == 64
    assert digest == compute_verification_hash(*args)
    assert digest == compute_verification_hash(
        args[0], args[1], str(TEMPLATE_ID), str(CODE_ID), ISSUED_AT
    )


@pytest.mark.parametrize(
    "field, value",
    [
        ("certificate_number", "CERT-20250309-107123-004218"),
        ("student_name", "Layla Hadad"),
        ("template_id", uuid.uuid4()),
        ("access_code_id", uuid.uuid4()),
        ("issued_at", ISSUED_AT.replace(microsecond=124000)),
    ],
)
def test_any_bound_field_changes_the_hash(field: str, value) -> None:
    fields = {
        "certificate_number": "CERT-20250309-107123-004217",
        "student_name": "Layla Haddad",
        "template_id": TEMPLATE_ID,
        "access_code_id": CODE_ID,
        "issued_at": ISSUED_AT,
    }
    baseline = compute_verification_hash(**fields)
    fields[field] = value
    assert compute_verification_hash(**fields) != baseline


def test_mint_produces_distinct_numbers() -> None:
    data = MintInput("Layla Haddad", TEMPLATE_ID, CODE_ID, ISSUED_AT)
    first = mint(data)
    second = mint(data)

    assert CERTIFICATE_NUMBER_RE.match(first.certificate_number)
    assert first.certificate_number != second.certificate_number
    assert first.verification_hash != second.verification_hash


def test_mint_uses_the_random_source(monkeypatch) -> None:
    monkeypatch.setattr(
        "issuance.certificates.minting.time.time_ns", lambda: 1741529107123 * 1_000_000
    )
    data = MintInput("Layla Haddad", TEMPLATE_ID, CODE_ID, ISSUED_AT)

    minted = mint(data, random_source=lambda n: "000002")

    assert minted.certificate_number == "CERT-20250309-107123-000002"
    assert minted.verification_hash == compute_verification_hash(
        minted.certificate_number, "Layla Haddad", TEMPLATE_ID, CODE_ID, ISSUED_AT
    )


@pytest.mark.parametrize(
    "message, expected",
    [
        ("UNIQUE constraint failed: issued_certificates.certificate_number", True),
        (
            'duplicate key value violates unique constraint '
            '"issued_certificates_certificate_number_key"',
            True,
        ),
        ("FOREIGN KEY constraint failed", False),
    ],
)
def test_is_number_collision(message: str, expected: bool) -> None:
    exc = IntegrityError("INSERT INTO issued_certificates ...", {}, Exception(message))
    assert is_number_collision(exc) is expected
