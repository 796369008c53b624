"""Blob stores for certificate PDFs and backup files.

Both stores share the ``put(data, path) -> url`` / ``get`` / ``delete``
contract and raise :class:`StorageError` on any failure. Nothing is retried
here; callers decide.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Protocol

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from issuance.config import Settings
from issuance.exceptions import StorageError

logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".json": "application/json",
}


class BlobStore(Protocol):
    async def put(self, data: bytes, path: str) -> str: ...

    async def get(self, path: str) -> bytes: ...

    async def delete(self, path: str) -> None: ...


def _normalise(path: str) -> str:
    """Reject absolute paths and ``..`` segments; return a clean relative key."""
    pure = PurePosixPath(path)
    if not path or pure.is_absolute() or ".." in pure.parts:
        raise StorageError("validate", path, "path must be relative and stay inside the store")
    return str(pure)


def _content_type(path: str) -> str:
    return _CONTENT_TYPES.get(PurePosixPath(path).suffix.lower(), "application/octet-stream")


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------


class LocalBlobStore:
    """Files under ``root``. Used in development and tests."""

    def __init__(self, root: str | Path, public_base_url: str = ""):
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _full_path(self, path: str) -> Path:
        return self.root / _normalise(path)

    def url_for(self, path: str) -> str:
        key = _normalise(path)
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return (self.root / key).as_uri()

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def put(self, data: bytes, path: str) -> str:
        target = self._full_path(path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            logger.error("Local blob write failed for %s: %s", path, exc)
            raise StorageError("put", path, str(exc)) from exc
        return self.url_for(path)

    async def get(self, path: str) -> bytes:
        target = self._full_path(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as exc:
            raise StorageError("get", path, str(exc)) from exc

    async def delete(self, path: str) -> None:
        target = self._full_path(path)
        try:
            await asyncio.to_thread(target.unlink, missing_ok=True)
        except OSError as exc:
            raise StorageError("delete", path, str(exc)) from exc


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------


class S3BlobStore:
    def __init__(self, settings: Settings):
        self.bucket = settings.s3_bucket
        self.region = settings.s3_region
        self.public_base_url = settings.public_base_url.rstrip("/")
        self._session = aioboto3.Session(
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
            region_name=settings.s3_region,
        )

    def url_for(self, path: str) -> str:
        key = _normalise(path)
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def put(self, data: bytes, path: str) -> str:
        key = _normalise(path)
        try:
            async with self._session.client("s3") as s3:
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=_content_type(key),
                )
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 put_object failed for key %s: %s", key, exc)
            raise StorageError("put", key, str(exc)) from exc
        return self.url_for(key)

    async def get(self, path: str) -> bytes:
        key = _normalise(path)
        try:
            async with self._session.client("s3") as s3:
                response = await s3.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("get", key, str(exc)) from exc

    async def delete(self, path: str) -> None:
        key = _normalise(path)
        try:
            async with self._session.client("s3") as s3:
                await s3.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 delete_object failed for key %s: %s", key, exc)
            raise StorageError("delete", key, str(exc)) from exc


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.blob_backend == "s3":
        return S3BlobStore(settings)
    return LocalBlobStore(settings.local_storage_root, settings.public_base_url)
