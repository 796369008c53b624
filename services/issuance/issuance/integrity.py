"""Integrity utilities — secure tokens, checksums, authenticated encryption.

Pure utility — no DB or FastAPI imports. Requires the ``cryptography`` package.

Encryption envelope (base64 of)::

    b"SHD1" | salt_len (1 byte) | iv_len (1 byte) | salt | iv | tag (16) | ciphertext

Everything needed to decrypt except the key travels inside the envelope.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import string
from enum import Enum

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from issuance.exceptions import EncryptionKeyMissingError, EntropyError, IntegrityCheckError

ENVELOPE_MAGIC = b"SHD1"
TAG_LENGTH = 16
ALLOWED_KEY_LENGTHS = frozenset({16, 24, 32, 48, 64})
MIN_ITERATIONS = 1_000

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_LINK_ALPHABET = string.ascii_letters + string.digits


class EncryptionMethod(str, Enum):
    AES_GCM = "aes-gcm"


class EncryptionSettings(BaseModel):
    """Crypto parameters. Weak configurations are rejected at construction."""

    model_config = ConfigDict(frozen=True)

    method: EncryptionMethod = EncryptionMethod.AES_GCM
    enabled: bool = True
    key_length: int = 32
    iv_length: int = Field(default=12, ge=12, le=64)
    salt_length: int = Field(default=32, ge=16, le=128)
    iterations: int = Field(default=100_000, ge=MIN_ITERATIONS)
    key: SecretStr | None = None

    @field_validator("key_length")
    @classmethod
    def _check_key_length(cls, value: int) -> int:
        if value not in ALLOWED_KEY_LENGTHS:
            raise ValueError(f"key_length must be one of {sorted(ALLOWED_KEY_LENGTHS)}")
        return value

    @property
    def cipher_key_length(self) -> int:
        # AES accepts 128/192/256-bit keys; longer settings only lengthen the master secret.
        return min(self.key_length, 32)


DEFAULT_ENCRYPTION_SETTINGS = EncryptionSettings()


# ---------------------------------------------------------------------------
# Random tokens
# ---------------------------------------------------------------------------


def _random_bytes(length: int) -> bytes:
    try:
        return secrets.token_bytes(length)
    except NotImplementedError as exc:
        raise EntropyError("No cryptographically secure randomness source available") from exc


def generate_token(byte_length: int = 32) -> str:
    """Return ``byte_length`` CSPRNG bytes as lowercase hex."""
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    return _random_bytes(byte_length).hex()


def generate_key(length: int = 32) -> str:
    return generate_token(length)


def random_string(length: int, alphabet: str = _CODE_ALPHABET) -> str:
    try:
        return "".join(secrets.choice(alphabet) for _ in range(length))
    except NotImplementedError as exc:
        raise EntropyError("No cryptographically secure randomness source available") from exc


def generate_access_code(length: int = 8) -> str:
    """Uppercase alphanumeric secret typed in by students."""
    return random_string(length, _CODE_ALPHABET)


def generate_unique_link(length: int = 12) -> str:
    return random_string(length, _LINK_ALPHABET)


def random_digits(count: int) -> str:
    try:
        return str(secrets.randbelow(10**count)).zfill(count)
    except NotImplementedError as exc:
        raise EntropyError("No cryptographically secure randomness source available") from exc


# ---------------------------------------------------------------------------
# Checksums
# ---------------------------------------------------------------------------


def _as_bytes(data: str | bytes) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def checksum(data: str | bytes) -> str:
    """SHA-256 hex digest (64 lowercase hex chars)."""
    return hashlib.sha256(_as_bytes(data)).hexdigest()


def verify_checksum(data: str | bytes, expected: str) -> bool:
    return hmac.compare_digest(checksum(data), expected.lower())


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------


def _resolve_key(key: str | None, settings: EncryptionSettings) -> bytes:
    if key:
        return key.encode("utf-8")
    if settings.key is not None and settings.key.get_secret_value():
        return settings.key.get_secret_value().encode("utf-8")
    raise EncryptionKeyMissingError("Encryption is enabled but no key is configured")


def _derive_key(secret: bytes, salt: bytes, settings: EncryptionSettings) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=settings.cipher_key_length,
        salt=salt,
        iterations=settings.iterations,
    )
    return kdf.derive(secret)


def encrypt_bytes(
    plaintext: bytes,
    key: str | None = None,
    settings: EncryptionSettings = DEFAULT_ENCRYPTION_SETTINGS,
) -> str:
    """Encrypt with AES-GCM under a PBKDF2-derived key; returns the base64 envelope."""
    secret = _resolve_key(key, settings)
    salt = _random_bytes(settings.salt_length)
    iv = _random_bytes(settings.iv_length)
    sealed = AESGCM(_derive_key(secret, salt, settings)).encrypt(iv, plaintext, ENVELOPE_MAGIC)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    envelope = b"".join(
        [
            ENVELOPE_MAGIC,
            bytes([len(salt), len(iv)]),
            salt,
            iv,
            tag,
            ciphertext,
        ]
    )
    return base64.b64encode(envelope).decode("ascii")


def decrypt_bytes(
    envelope: str,
    key: str | None = None,
    settings: EncryptionSettings = DEFAULT_ENCRYPTION_SETTINGS,
) -> bytes:
    """Open an envelope produced by :func:`encrypt_bytes`.

    Raises ``IntegrityCheckError`` on a malformed envelope, a wrong key, or any
    tampering with salt, IV, tag or ciphertext.
    """
    secret = _resolve_key(key, settings)
    try:
        raw = base64.b64decode(envelope, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise IntegrityCheckError("Encrypted envelope is not valid base64") from exc

    header = len(ENVELOPE_MAGIC) + 2
    if len(raw) < header or raw[: len(ENVELOPE_MAGIC)] != ENVELOPE_MAGIC:
        raise IntegrityCheckError("Unrecognised encryption envelope")
    salt_len, iv_len = raw[len(ENVELOPE_MAGIC)], raw[len(ENVELOPE_MAGIC) + 1]
    body = raw[header:]
    if salt_len == 0 or iv_len == 0 or len(body) < salt_len + iv_len + TAG_LENGTH:
        raise IntegrityCheckError("Truncated encryption envelope")

    salt = body[:salt_len]
    iv = body[salt_len : salt_len + iv_len]
    tag = body[salt_len + iv_len : salt_len + iv_len + TAG_LENGTH]
    ciphertext = body[salt_len + iv_len + TAG_LENGTH :]
    try:
        return AESGCM(_derive_key(secret, salt, settings)).decrypt(
            iv, ciphertext + tag, ENVELOPE_MAGIC
        )
    except InvalidTag as exc:
        raise IntegrityCheckError("Authentication tag mismatch (wrong key or tampered data)") from exc


def encrypt(
    plaintext: str,
    key: str | None = None,
    settings: EncryptionSettings = DEFAULT_ENCRYPTION_SETTINGS,
) -> str:
    """Encrypt text. Returns the input unchanged when encryption is disabled."""
    if not settings.enabled:
        return plaintext
    return encrypt_bytes(plaintext.encode("utf-8"), key, settings)


def decrypt(
    envelope: str,
    key: str | None = None,
    settings: EncryptionSettings = DEFAULT_ENCRYPTION_SETTINGS,
) -> str:
    if not settings.enabled:
        return envelope
    return decrypt_bytes(envelope, key, settings).decode("utf-8")
