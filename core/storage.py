"""
Blob storage back ends.

A blob store keeps the raw bytes of uploaded files keyed by file
identifier. It knows nothing about metadata or expiry.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from core.config import Settings
from core.logger import logger

COPY_CHUNK_SIZE = 1024 * 1024
# Uploads larger than this are spooled to disk before being sent to S3
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


class BlobStoreError(Exception):
    """Generic blob storage failure."""


class BlobNotFoundError(BlobStoreError):
    """Raised when the blob for an identifier does not exist."""


class BlobTooLargeError(BlobStoreError):
    """Raised when content exceeds the store's maximum blob size."""


class BlobStore(Protocol):
    """Storage provider interface."""

    def save(self, file_id: str, reader: BinaryIO) -> int: ...
    def open_read(self, file_id: str) -> BinaryIO: ...
    def delete(self, file_id: str) -> None: ...


def _copy_limited(reader: BinaryIO, dest: BinaryIO, max_size: int | None) -> int:
    """Copy reader into dest, failing once more than max_size bytes were read."""
    total = 0
    while True:
        chunk = reader.read(COPY_CHUNK_SIZE)
        if not chunk:
            return total
        total += len(chunk)
        if max_size is not None and total > max_size:
            raise BlobTooLargeError(f"Content exceeds maximum size of {max_size} bytes")
        dest.write(chunk)


class LocalBlobStore:
    """Stores each blob as a single file named after its identifier."""

    def __init__(self, data_dir: str | Path, max_size: int | None = None):
        self.data_dir = Path(data_dir)
        self.max_size = max_size

    def _path(self, file_id: str) -> Path:
        # Identifiers are used as bare file names, never as paths
        if not file_id or file_id in (".", "..") or Path(file_id).name != file_id:
            raise BlobNotFoundError(file_id)
        return self.data_dir / file_id

    def save(self, file_id: str, reader: BinaryIO) -> int:
        """
        Write a blob atomically.

        Content goes to a temporary file in the data directory which is
        renamed into place once complete, so readers never see a partial
        blob and a failed write leaves nothing behind.

        Returns:
            Number of bytes written
        """
        try:
            path = self._path(file_id)
        except BlobNotFoundError as exc:
            raise BlobStoreError(f"Invalid file identifier: {file_id!r}") from exc

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=".upload-")
        except OSError as exc:
            raise BlobStoreError(f"Failed to create blob {file_id}") from exc

        try:
            with os.fdopen(fd, "wb") as tmp:
                size = _copy_limited(reader, tmp, self.max_size)
            os.replace(tmp_name, path)
        except OSError as exc:
            _unlink_quietly(tmp_name)
            raise BlobStoreError(f"Failed to write blob {file_id}") from exc
        except BaseException:
            _unlink_quietly(tmp_name)
            raise

        return size

    def open_read(self, file_id: str) -> BinaryIO:
        path = self._path(file_id)
        try:
            return open(path, "rb")
        except FileNotFoundError as exc:
            raise BlobNotFoundError(file_id) from exc
        except OSError as exc:
            raise BlobStoreError(f"Failed to open blob {file_id}") from exc

    def delete(self, file_id: str) -> None:
        path = self._path(file_id)
        try:
            os.remove(path)
        except FileNotFoundError as exc:
            raise BlobNotFoundError(file_id) from exc
        except OSError as exc:
            raise BlobStoreError(f"Failed to delete blob {file_id}") from exc


def _unlink_quietly(name: str) -> None:
    try:
        os.unlink(name)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove temporary upload %s: %s", name, exc)


class S3BlobStore:
    """S3/MinIO-backed storage provider."""

    def __init__(
        self,
        bucket_name: str,
        prefix: str = "",
        max_size: int | None = None,
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.bucket_name = bucket_name
        self.prefix = prefix.strip("/")
        self.max_size = max_size
        self.region = region
        if client is not None:
            self.client = client
            return
        import boto3  # pylint: disable=import-outside-toplevel

        # Unset credentials fall through to boto3's default provider chain
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    @staticmethod
    def _error_code(exc: Exception) -> str:
        response = getattr(exc, "response", None)
        if isinstance(response, dict):
            err = response.get("Error", {})
            if isinstance(err, dict):
                return str(err.get("Code", ""))
        return ""

    def _key(self, file_id: str) -> str:
        return f"{self.prefix}/{file_id}" if self.prefix else file_id

    def ensure_bucket(self) -> None:
        """Create bucket if missing (safe to call repeatedly)."""
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
            return
        except ClientError as exc:
            code = self._error_code(exc)
            if code not in {"404", "NoSuchBucket"}:
                raise BlobStoreError("Unable to check storage bucket") from exc

        kwargs: dict = {"Bucket": self.bucket_name}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self.client.create_bucket(**kwargs)
        logger.info("Created storage bucket: %s", self.bucket_name)

    def save(self, file_id: str, reader: BinaryIO) -> int:
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY) as spool:
            try:
                size = _copy_limited(reader, spool, self.max_size)
                spool.seek(0)
            except OSError as exc:
                raise BlobStoreError(f"Failed to buffer blob {file_id}") from exc
            try:
                self.client.put_object(
                    Bucket=self.bucket_name, Key=self._key(file_id), Body=spool
                )
            except (BotoCoreError, ClientError) as exc:
                raise BlobStoreError(f"Failed to upload blob {file_id}") from exc
        return size

    def open_read(self, file_id: str) -> BinaryIO:
        try:
            obj = self.client.get_object(Bucket=self.bucket_name, Key=self._key(file_id))
        except ClientError as exc:
            if self._error_code(exc) in {"404", "NoSuchKey"}:
                raise BlobNotFoundError(file_id) from exc
            raise BlobStoreError(f"Failed to open blob {file_id}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"Failed to open blob {file_id}") from exc
        return obj["Body"]

    def delete(self, file_id: str) -> None:
        # S3 deletes succeed for missing keys, so check first to report absence
        key = self._key(file_id)
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as exc:
            if self._error_code(exc) in {"404", "NoSuchKey", "NotFound"}:
                raise BlobNotFoundError(file_id) from exc
            raise BlobStoreError(f"Failed to check blob {file_id}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"Failed to check blob {file_id}") from exc

        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Failed to delete blob {file_id}") from exc


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the blob store selected by STORAGE_BACKEND"""
    if settings.STORAGE_BACKEND == "s3":
        if not settings.S3_BUCKET:
            raise ValueError("S3_BUCKET must be set when STORAGE_BACKEND is 's3'")
        return S3BlobStore(
            bucket_name=settings.S3_BUCKET,
            prefix=settings.S3_PREFIX,
            max_size=settings.MAX_UPLOAD_SIZE,
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.AWS_REGION,
            access_key_id=settings.AWS_ACCESS_KEY_ID,
            secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        )
    return LocalBlobStore(settings.DATA_DIR, max_size=settings.MAX_UPLOAD_SIZE)
