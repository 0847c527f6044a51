"""
Metadata store for file records
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from api.files.exceptions import MetadataStoreError, RecordNotFoundError
from api.files.models import FileRecord


class MetadataStore(Protocol):
    """Metadata provider interface."""

    def insert(self, record: FileRecord) -> None: ...
    def find_by_id(self, file_id: str) -> FileRecord: ...
    def find_latest_by_tag(self, tag: str, live_at: datetime | None = None) -> FileRecord: ...
    def list_all(self) -> list[FileRecord]: ...
    def find_expired(self, now: datetime) -> list[FileRecord]: ...
    def delete(self, file_id: str) -> None: ...


class SQLMetadataStore:
    """
    Metadata store backed by a SQLModel session.

    Every write commits immediately; the store never holds a transaction
    open across calls. SQLAlchemy errors are rolled back and re-raised as
    MetadataStoreError.
    """

    def __init__(self, session: Session):
        self.session = session

    def insert(self, record: FileRecord) -> None:
        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise MetadataStoreError(f"Failed to insert file record {record.id}") from exc

    def find_by_id(self, file_id: str) -> FileRecord:
        try:
            record = self.session.get(FileRecord, file_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise MetadataStoreError(f"Failed to find file record {file_id}") from exc
        if record is None:
            raise RecordNotFoundError(file_id)
        return record

    def find_latest_by_tag(self, tag: str, live_at: datetime | None = None) -> FileRecord:
        """
        Most recently created record carrying tag.
        Equal created_at values are ordered by id so the answer is stable.
        With live_at, records already expired at that time are skipped.
        """
        statement = select(FileRecord).where(FileRecord.tag == tag)
        if live_at is not None:
            statement = statement.where(FileRecord.expires_at >= live_at)
        try:
            record = self.session.exec(
                statement
                .order_by(FileRecord.created_at.desc(), FileRecord.id.desc())
                .limit(1)
            ).first()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise MetadataStoreError(f"Failed to find file record by tag {tag!r}") from exc
        if record is None:
            raise RecordNotFoundError(tag)
        return record

    def list_all(self) -> list[FileRecord]:
        try:
            return list(
                self.session.exec(
                    select(FileRecord).order_by(
                        FileRecord.created_at.desc(), FileRecord.id.desc()
                    )
                ).all()
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise MetadataStoreError("Failed to list file records") from exc

    def find_expired(self, now: datetime) -> list[FileRecord]:
        try:
            return list(
                self.session.exec(
                    select(FileRecord)
                    .where(FileRecord.expires_at < now)
                    .order_by(FileRecord.expires_at)
                ).all()
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise MetadataStoreError("Failed to query expired file records") from exc

    def delete(self, file_id: str) -> None:
        record = self.find_by_id(file_id)
        try:
            self.session.delete(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise MetadataStoreError(f"Failed to delete file record {file_id}") from exc
