"""
Services for the Files API

FileService is the file lifecycle engine. It is the only component that
talks to the blob store, the metadata store and the link signer together,
and it keeps the two stores consistent:

- upload writes the blob, then the record; a failed record insert deletes
  the blob again
- delete removes the blob, then the record; "already gone" is not an error
- expired files are evicted lazily when a download or tag lookup finds them
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Callable, Iterator

from api.files.exceptions import (
    ContentTooLargeError,
    DeleteError,
    ForbiddenError,
    MetadataStoreError,
    NotFoundError,
    RecordNotFoundError,
    StoreError,
    UploadError,
    ValidationError,
)
from api.files.models import FileRecord, FileUploadResponse
from api.files.repository import MetadataStore
from core.logger import logger
from core.security import LinkSigner, generate_file_id
from core.storage import BlobNotFoundError, BlobStore, BlobStoreError, BlobTooLargeError

DEFAULT_MIME_TYPE = "application/octet-stream"
STREAM_CHUNK_SIZE = 64 * 1024


def utcnow() -> datetime:
    """Current time as naive UTC, matching what the database hands back"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class SignedReference:
    """A file identifier plus the signature that grants download access"""

    file_id: str
    signature: str
    url: str


@dataclass(frozen=True)
class UploadResult:
    """Record created by an upload and its signed download reference"""

    record: FileRecord
    reference: SignedReference

    def to_response(self) -> FileUploadResponse:
        return FileUploadResponse(
            **self.record.model_dump(),
            signature=self.reference.signature,
            url=self.reference.url,
        )


class Download:
    """
    An open download: the file record and a readable blob stream.

    The stream is released by close(), by leaving a `with` block, or when
    iter_chunks() finishes or is abandoned. close() may be called any
    number of times.
    """

    def __init__(self, record: FileRecord, stream: BinaryIO):
        self.record = record
        self.stream = stream
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stream.close()

    def __enter__(self) -> "Download":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def iter_chunks(self, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.stream.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()


class FileService:
    """
    Upload, download, delete, list and tag resolution for stored files.

    Args:
        blob_store: Where file content lives
        metadata_store: Where file records live
        signer: Signs and verifies download links
        ttl: Lifetime of every uploaded file
        link_prefix: Path prefix of the signed download url
        clock: Returns the current time as naive UTC
    """

    def __init__(
        self,
        blob_store: BlobStore,
        metadata_store: MetadataStore,
        signer: LinkSigner,
        ttl: timedelta,
        link_prefix: str = "/api/v1/files",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.blob_store = blob_store
        self.metadata_store = metadata_store
        self.signer = signer
        self.ttl = ttl
        self.link_prefix = link_prefix.rstrip("/")
        self.clock = clock

    def upload(
        self,
        name: str,
        mime_type: str | None,
        content: BinaryIO | None,
        tag: str | None = None,
    ) -> UploadResult:
        """
        Store new content and return its record and signed reference.

        Raises:
            ValidationError: Missing content or name, or content too large
            UploadError: The blob or its record could not be stored
        """
        if content is None:
            raise ValidationError("No file content provided")
        if not name or not name.strip():
            raise ValidationError("A file name is required")
        mime_type = (mime_type or "").strip() or DEFAULT_MIME_TYPE
        tag = tag.strip() if tag and tag.strip() else None

        file_id = generate_file_id()

        try:
            size = self.blob_store.save(file_id, content)
        except BlobTooLargeError as exc:
            logger.info("Rejected upload of %r: %s", name, exc)
            raise ContentTooLargeError(str(exc)) from exc
        except BlobStoreError as exc:
            logger.error("Failed to store content of %r as %s: %s", name, file_id, exc)
            raise UploadError(f"Failed to save file {name!r}") from exc

        now = self.clock()
        record = FileRecord(
            id=file_id,
            name=name,
            tag=tag,
            size=size,
            mime_type=mime_type,
            created_at=now,
            expires_at=now + self.ttl,
        )

        try:
            self.metadata_store.insert(record)
        except MetadataStoreError as exc:
            logger.error("Failed to save metadata for %s: %s", file_id, exc)
            cleanup_error = self._discard_blob(file_id)
            raise UploadError(
                f"Failed to save metadata for file {name!r}", cleanup_error=cleanup_error
            ) from exc

        logger.info("Uploaded file %s (%r, %d bytes, tag=%r)", file_id, name, size, tag)
        return UploadResult(record=record, reference=self.sign_reference(file_id))

    def download(self, file_id: str, signature: str | None) -> Download:
        """
        Open a file for reading after checking its signature and expiry.
        The caller owns the returned Download and must close it.

        Raises:
            ForbiddenError: The signature does not match the identifier
            NotFoundError: No such file, it expired, or its blob is gone
            StoreError: A store failed for another reason
        """
        if not self.signer.verify(file_id, signature):
            logger.warning("Rejected download of %s: invalid signature", file_id)
            raise ForbiddenError("Invalid signature")

        record = self._find(file_id)

        if record.is_expired(self.clock()):
            logger.info("File %s expired at %s, evicting", file_id, record.expires_at)
            self._evict(file_id)
            raise NotFoundError(f"File {file_id} has expired")

        try:
            stream = self.blob_store.open_read(file_id)
        except BlobNotFoundError as exc:
            logger.warning("Content of file %s is missing, removing orphaned record", file_id)
            self._discard_record(file_id)
            raise NotFoundError(f"File {file_id} not found") from exc
        except BlobStoreError as exc:
            raise StoreError(f"Failed to read file {file_id}") from exc

        return Download(record, stream)

    def delete(self, file_id: str) -> None:
        """
        Remove a file's blob, then its record. Safe to retry: a file that
        is already (partly) gone is not an error.

        Raises:
            DeleteError: A store failed; if the blob delete failed the
                record is left untouched
        """
        try:
            self.blob_store.delete(file_id)
        except BlobNotFoundError:
            logger.info("Content of file %s already absent", file_id)
        except BlobStoreError as exc:
            logger.error("Failed to delete content of file %s: %s", file_id, exc)
            raise DeleteError(f"Failed to delete file {file_id}") from exc

        try:
            self.metadata_store.delete(file_id)
        except RecordNotFoundError:
            logger.info("Record of file %s already absent", file_id)
        except MetadataStoreError as exc:
            logger.error("Failed to delete record of file %s: %s", file_id, exc)
            raise DeleteError(f"Failed to delete file {file_id}") from exc

        logger.info("Deleted file %s", file_id)

    def list(self) -> list[FileRecord]:
        """All non-expired records, newest first"""
        try:
            records = self.metadata_store.list_all()
        except MetadataStoreError as exc:
            raise StoreError("Failed to list files") from exc
        now = self.clock()
        return [record for record in records if not record.is_expired(now)]

    def resolve_latest_by_tag(self, tag: str) -> SignedReference:
        """
        Signed reference to the newest unexpired file carrying tag.

        An expired newest file is evicted and the lookup falls back to the
        newest file that is still live. That only differs from a plain miss
        when FILE_TTL changed between uploads.

        Raises:
            NotFoundError: No unexpired file has the tag
        """
        now = self.clock()
        try:
            record = self.metadata_store.find_latest_by_tag(tag)
            if record.is_expired(now):
                logger.info("Latest file %s for tag %r expired, evicting", record.id, tag)
                self._evict(record.id)
                record = self.metadata_store.find_latest_by_tag(tag, live_at=now)
        except RecordNotFoundError as exc:
            raise NotFoundError(f"No file tagged {tag!r}") from exc
        except MetadataStoreError as exc:
            raise StoreError(f"Failed to resolve tag {tag!r}") from exc

        return self.sign_reference(record.id)

    def list_expired(self) -> list[FileRecord]:
        """Records whose expiry has passed but which are still stored"""
        try:
            return self.metadata_store.find_expired(self.clock())
        except MetadataStoreError as exc:
            raise StoreError("Failed to query expired files") from exc

    def purge_expired(self) -> int:
        """
        Delete every expired file. Failures are logged per file and do
        not stop the sweep.

        Returns:
            Number of files removed
        """
        removed = 0
        for record in self.list_expired():
            try:
                self.delete(record.id)
            except DeleteError as exc:
                logger.error("Failed to purge expired file %s: %s", record.id, exc)
                continue
            removed += 1
        logger.info("Purged %d expired file(s)", removed)
        return removed

    def sign_reference(self, file_id: str) -> SignedReference:
        signature = self.signer.sign(file_id)
        return SignedReference(
            file_id=file_id,
            signature=signature,
            url=f"{self.link_prefix}/{file_id}?signature={signature}",
        )

    def _find(self, file_id: str) -> FileRecord:
        try:
            return self.metadata_store.find_by_id(file_id)
        except RecordNotFoundError as exc:
            raise NotFoundError(f"File {file_id} not found") from exc
        except MetadataStoreError as exc:
            raise StoreError(f"Failed to look up file {file_id}") from exc

    def _evict(self, file_id: str) -> None:
        # Keep the record if the blob could not be removed so a later
        # eviction or purge can find it again
        if self._discard_blob(file_id) is None:
            self._discard_record(file_id)

    def _discard_blob(self, file_id: str) -> Exception | None:
        """Best-effort blob delete. Returns the failure, if any."""
        try:
            self.blob_store.delete(file_id)
        except BlobNotFoundError:
            return None
        except BlobStoreError as exc:
            logger.warning("Cleanup of content for file %s failed: %s", file_id, exc)
            return exc
        return None

    def _discard_record(self, file_id: str) -> Exception | None:
        """Best-effort record delete. Returns the failure, if any."""
        try:
            self.metadata_store.delete(file_id)
        except RecordNotFoundError:
            return None
        except MetadataStoreError as exc:
            logger.warning("Cleanup of record for file %s failed: %s", file_id, exc)
            return exc
        return None
