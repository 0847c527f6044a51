"""
Routes/endpoints for the Files API

HTTP   URI                                      Action
----   ---                                      ------
POST   /api/v1/files                            Upload a file (admin)
GET    /api/v1/files                            List unexpired files (admin)
GET    /api/v1/files/latest/[tag]               Redirect to the newest file with a tag
DELETE /api/v1/files/[file_id]                  Delete a file (admin)
GET    /api/v1/files/[file_id]?signature=[sig]  Download a file with a signed link
"""

from urllib.parse import quote

from fastapi import APIRouter, File, Form, HTTPException, Query, Response, UploadFile, status
from fastapi.responses import RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask

from api.files.exceptions import (
    ContentTooLargeError,
    DeleteError,
    ForbiddenError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from api.files.models import FilePublic, FileUploadResponse
from core.deps import AdminDep, FileServiceDep
from core.logger import logger

router = APIRouter(prefix="/files", tags=["File Endpoints"])


def _content_disposition(filename: str) -> str:
    """attachment header with an ASCII fallback and an RFC 5987 filename*"""
    fallback = filename.encode("ascii", "replace").decode("ascii")
    fallback = fallback.replace('"', "'").replace("\\", "_").replace("\r", "").replace("\n", "")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


@router.post(
    "",
    response_model=FileUploadResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["File Endpoints"],
)
def upload_file(
    _: AdminDep,
    service: FileServiceDep,
    file: UploadFile | None = File(None, description="File content"),
    tag: str | None = Form(None, description="Optional label used by /latest/{tag}"),
) -> FileUploadResponse:
    """
    Upload a file and receive a signed download link.
    The link stops working once the file expires or is deleted.
    """
    if file is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file provided",
        )

    try:
        result = service.upload(
            name=file.filename or "",
            mime_type=file.content_type,
            content=file.file,
            tag=tag,
        )
    except ContentTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Request entity too large",
        ) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except StoreError as exc:
        logger.error("Upload failed for %r: %s", file.filename, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Upload failed",
        ) from exc
    finally:
        file.file.close()

    return result.to_response()


@router.get(
    "",
    response_model=list[FilePublic],
    status_code=status.HTTP_200_OK,
    tags=["File Endpoints"],
)
def list_files(_: AdminDep, service: FileServiceDep) -> list[FilePublic]:
    """
    List all files that have not expired, newest first.
    """
    try:
        records = service.list()
    except StoreError as exc:
        logger.error("List files failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list files",
        ) from exc
    return [FilePublic(**record.model_dump()) for record in records]


@router.get("/latest/{tag}", tags=["File Endpoints"])
def get_latest_file_by_tag(tag: str, service: FileServiceDep) -> RedirectResponse:
    """
    Redirect to a signed download link for the newest file with the given tag.
    """
    try:
        reference = service.resolve_latest_by_tag(tag)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Failed to get latest file by tag",
        ) from exc
    except StoreError as exc:
        logger.error("Get latest by tag %r failed: %s", tag, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get latest file by tag",
        ) from exc
    return RedirectResponse(url=reference.url, status_code=status.HTTP_302_FOUND)


@router.delete(
    "/{file_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["File Endpoints"],
)
def delete_file(file_id: str, _: AdminDep, service: FileServiceDep) -> Response:
    """
    Delete a file. Deleting a file that no longer exists succeeds.
    """
    try:
        service.delete(file_id)
    except DeleteError as exc:
        logger.error("Delete failed for %s: %s", file_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Delete failed",
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{file_id}", tags=["File Endpoints"])
def download_file(
    file_id: str,
    service: FileServiceDep,
    signature: str = Query("", description="Signature from the upload response"),
) -> StreamingResponse:
    """
    Stream a file's content.

    A bad signature and an unknown or expired file get the same 404 answer,
    so the endpoint cannot be used to discover which identifiers exist.
    """
    try:
        download = service.download(file_id, signature)
    except (ForbiddenError, NotFoundError) as exc:
        logger.info("Download of %s refused: %s", file_id, exc)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Download failed",
        ) from exc
    except StoreError as exc:
        logger.error("Download of %s failed: %s", file_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Download failed",
        ) from exc

    record = download.record
    # The generator closes the blob when it finishes; the background task
    # covers responses that stop early (client disconnects, send errors)
    return StreamingResponse(
        download.iter_chunks(),
        media_type=record.mime_type,
        headers={
            "Content-Disposition": _content_disposition(record.name),
            "Content-Length": str(record.size),
        },
        background=BackgroundTask(download.close),
    )
