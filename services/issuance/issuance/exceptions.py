"""Shared domain exception classes for the issuance service.

These are raised by service-layer code and caught by controllers
to map to appropriate HTTP responses.
"""

from __future__ import annotations

from issuance.models.enums import AccessCodeRejection


class InvalidIssuanceRequestError(Exception):
    """Raised when a redemption request is malformed. No side effect has happened yet."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"Invalid issuance request: {detail}")


# ---------------------------------------------------------------------------
# Access code ledger
# ---------------------------------------------------------------------------


class AccessCodeRejectedError(Exception):
    """Base class for the four ledger rejections; ``reason`` is surfaced verbatim."""

    reason: AccessCodeRejection

    def __init__(self, identifier: str = ""):
        self.identifier = identifier
        super().__init__(f"Access code {self.reason.value}: {identifier}")


class AccessCodeNotFoundError(AccessCodeRejectedError):
    reason = AccessCodeRejection.NOT_FOUND


class AccessCodeExpiredError(AccessCodeRejectedError):
    reason = AccessCodeRejection.EXPIRED


class AccessCodeDisabledError(AccessCodeRejectedError):
    reason = AccessCodeRejection.DISABLED


class AccessCodeExhaustedError(AccessCodeRejectedError):
    reason = AccessCodeRejection.EXHAUSTED


_REJECTION_ERRORS: dict[AccessCodeRejection, type[AccessCodeRejectedError]] = {
    AccessCodeRejection.NOT_FOUND: AccessCodeNotFoundError,
    AccessCodeRejection.EXPIRED: AccessCodeExpiredError,
    AccessCodeRejection.DISABLED: AccessCodeDisabledError,
    AccessCodeRejection.EXHAUSTED: AccessCodeExhaustedError,
}


def rejection_error(reason: AccessCodeRejection, identifier: str = "") -> AccessCodeRejectedError:
    return _REJECTION_ERRORS[reason](identifier)


class InvalidStatusTransitionError(Exception):
    """Raised when an access code status transition is not allowed."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class AccessCodeGenerationError(Exception):
    """Raised when no unique code/link pair could be generated."""


# ---------------------------------------------------------------------------
# Templates and certificates
# ---------------------------------------------------------------------------


class TemplateNotFoundError(Exception):
    def __init__(self, identifier: str = ""):
        self.identifier = identifier
        super().__init__(f"Template not found: {identifier}")


class NotTemplateOwnerError(Exception):
    """Raised when an instructor manages codes for a template they don't own."""


class CertificateNotFoundError(Exception):
    def __init__(self, identifier: str = ""):
        self.identifier = identifier
        super().__init__(f"Certificate not found: {identifier}")


class NumberingExhaustedError(Exception):
    """Raised when the minter cannot find an unused certificate number."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"No unique certificate number after {attempts} attempts")


class RenderError(Exception):
    """Raised when the template renderer cannot produce a document."""


# ---------------------------------------------------------------------------
# Integrity and storage
# ---------------------------------------------------------------------------


class IntegrityCheckError(Exception):
    """Raised on checksum or authentication-tag mismatch. Never auto-corrected."""


class EntropyError(Exception):
    """Raised when the operating system CSPRNG is unavailable."""


class EncryptionKeyMissingError(Exception):
    """Raised when encryption is enabled but no key was supplied or configured."""


class StorageError(Exception):
    """Raised when a blob store or row store call fails."""

    def __init__(self, operation: str, path: str = "", detail: str = ""):
        self.operation = operation
        self.path = path
        self.detail = detail
        super().__init__(f"Storage {operation} failed for {path!r}: {detail}")


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


class BackupNotFoundError(Exception):
    def __init__(self, operation_id: str = ""):
        self.operation_id = operation_id
        super().__init__(f"Backup operation not found: {operation_id}")


class BackupNotRestorableError(Exception):
    """Raised when restore is requested for a backup that never completed."""

    def __init__(self, operation_id: str, status: str):
        self.operation_id = operation_id
        self.status = status
        super().__init__(f"Backup {operation_id} is {status}, not completed")
