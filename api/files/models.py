"""
Models for the Files API
"""

from datetime import datetime
from sqlalchemy import DateTime, Index
from sqlmodel import SQLModel, Field
from pydantic import ConfigDict


class FileRecord(SQLModel, table=True):
    """
    Metadata for one uploaded file.

    The id is also the key of the file's blob in the blob store.
    Records are never updated, only inserted and deleted.
    """
    __tablename__ = "files"
    __table_args__ = (
        Index("ix_files_tag_created_at", "tag", "created_at"),
        Index("ix_files_expires_at", "expires_at"),
    )

    id: str = Field(primary_key=True, max_length=64)
    name: str = Field(max_length=255, nullable=False)  # Advisory, used for Content-Disposition
    tag: str | None = Field(default=None, max_length=255)
    size: int = Field(nullable=False)  # Size in bytes
    mime_type: str = Field(max_length=255, nullable=False)
    created_at: datetime = Field(sa_type=DateTime(), nullable=False)  # Naive UTC
    expires_at: datetime = Field(sa_type=DateTime(), nullable=False)  # Naive UTC

    model_config = ConfigDict(from_attributes=True)

    def is_expired(self, now: datetime) -> bool:
        """A file is expired once now is strictly past expires_at"""
        return now > self.expires_at


class FilePublic(SQLModel):
    """Public file representation"""

    id: str
    name: str
    tag: str | None = None
    size: int
    mime_type: str
    created_at: datetime
    expires_at: datetime


class FileUploadResponse(FilePublic):
    """Response model for file upload"""

    signature: str
    url: str
