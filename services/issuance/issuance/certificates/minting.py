"""Certificate minter — certificate numbers and verification hashes.

The verification hash is an integrity binding, not a secret: anyone holding
the five bound fields can recompute it.
"""

from __future__ import annotations

import hashlib
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from issuance.integrity import random_digits
from issuance.models.certificate import IssuedCertificate

CERTIFICATE_NUMBER_RE = re.compile(r"^CERT-\d{8}-\d{6}-\d{6}$")
HASH_FIELD_SEPARATOR = "|"

_NUMBER_COLUMN = "certificate_number"


@dataclass(frozen=True)
class MintInput:
    student_name: str
    template_id: UUID | str
    access_code_id: UUID | str
    issued_at: datetime


@dataclass(frozen=True)
class MintedIdentifiers:
    certificate_number: str
    verification_hash: str


def format_issued_at(issued_at: datetime) -> str:
    """UTC, millisecond precision, ``Z`` suffix: ``2025-01-01T00:00:00.000Z``."""
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    utc = issued_at.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def build_certificate_number(
    issued_at: datetime,
    *,
    epoch_ms: int | None = None,
    random_part: str | None = None,
) -> str:
    """``CERT-YYYYMMDD-<last 6 digits of epoch ms>-<6 random digits>``."""
    if issued_at.tzinfo is not None:
        issued_at = issued_at.astimezone(timezone.utc)
    if epoch_ms is None:
        epoch_ms = time.time_ns() // 1_000_000
    stamp = str(epoch_ms)[-6:].zfill(6)
    rand = random_part if random_part is not None else random_digits(6)
    return f"CERT-{issued_at:%Y%m%d}-{stamp}-{rand}"


def compute_verification_hash(
    certificate_number: str,
    student_name: str,
    template_id: UUID | str,
    access_code_id: UUID | str,
    issued_at: datetime,
) -> str:
    message = HASH_FIELD_SEPARATOR.join(
        [
            certificate_number,
            student_name,
            str(template_id),
            str(access_code_id),
            format_issued_at(issued_at),
        ]
    )
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def hash_for_certificate(cert: IssuedCertificate) -> str:
    return compute_verification_hash(
        cert.certificate_number,
        cert.student_name,
        cert.template_id,
        cert.access_code_id,
        cert.issued_at,
    )




def mint(
    data: MintInput,
    *,
    random_source: Callable[[int], str] | None = None,
) -> MintedIdentifiers:
    """Derive a candidate certificate number and its verification hash.

    Uniqueness is not checked here: the unique index on
    ``certificate_number`` rejects a taken number at insert time and the
    caller mints again with fresh randomness.
    """
    draw = random_source or random_digits
    number = build_certificate_number(data.issued_at, random_part=draw(6))
    return MintedIdentifiers(
        certificate_number=number,
        verification_hash=compute_verification_hash(
            number,
            data.student_name,
            data.template_id,
            data.access_code_id,
            data.issued_at,
        ),
    )


def is_number_collision(exc: IntegrityError) -> bool:
    """True when ``exc`` is the unique index on ``certificate_number`` firing."""
    return _NUMBER_COLUMN in str(exc.orig)
