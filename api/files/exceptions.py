"""
Exceptions raised by the Files service and its metadata store
"""


class FileServiceError(Exception):
    """Base class for file lifecycle errors."""


class ValidationError(FileServiceError):
    """Raised for bad input, e.g. missing content or oversized uploads."""


class ContentTooLargeError(ValidationError):
    """Raised when upload content exceeds the maximum file size."""


class NotFoundError(FileServiceError):
    """Raised when a file is missing or has expired."""


class ForbiddenError(FileServiceError):
    """Raised when a download signature does not verify."""


class StoreError(FileServiceError):
    """Raised when a blob or metadata store operation fails."""


class UploadError(StoreError):
    """
    Raised when an upload could not be completed.

    cleanup_error holds the failure of the compensating blob delete, if
    that also failed. It never replaces the primary cause.
    """

    def __init__(self, message: str, cleanup_error: Exception | None = None):
        super().__init__(message)
        self.cleanup_error = cleanup_error


class DeleteError(StoreError):
    """Raised when a file could not be deleted."""


class MetadataStoreError(Exception):
    """Generic metadata store failure."""


class RecordNotFoundError(MetadataStoreError):
    """Raised when no record exists for the requested key."""
