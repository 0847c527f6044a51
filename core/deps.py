"""
Define functions/aliases for dependency injection
"""
from collections.abc import Generator
from typing import Annotated, TypeAlias
from sqlmodel import Session
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.files.repository import SQLMetadataStore
from api.files.services import FileService
from core.config import get_settings
from core.db import get_engine
from core.security import LinkSigner, tokens_match
from core.storage import BlobStore, create_blob_store

# auto_error=False so a missing header is reported as 401, not 403
bearer_scheme = HTTPBearer(auto_error=False)


# Define db dependency
def get_db() -> Generator[Session, None, None]:
    with Session(get_engine()) as session:
        yield session


def get_blob_store() -> BlobStore:
    return create_blob_store(get_settings())


def get_link_signer() -> LinkSigner:
    key = get_settings().FILES_STASH_HMAC_KEY
    if not key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Link signing key is not configured",
        )
    return LinkSigner(key)


SessionDep: TypeAlias = Annotated[Session, Depends(get_db)]
BlobStoreDep: TypeAlias = Annotated[BlobStore, Depends(get_blob_store)]
LinkSignerDep: TypeAlias = Annotated[LinkSigner, Depends(get_link_signer)]


def get_file_service(
    session: SessionDep,
    blob_store: BlobStoreDep,
    signer: LinkSignerDep,
) -> FileService:
    settings = get_settings()
    return FileService(
        blob_store=blob_store,
        metadata_store=SQLMetadataStore(session),
        signer=signer,
        ttl=settings.FILE_TTL,
        link_prefix=settings.DOWNLOAD_PATH_PREFIX,
    )


def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """
    Reject requests that do not carry the configured admin bearer token

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    provided = credentials.credentials if credentials else None
    if not tokens_match(provided, get_settings().FILES_STASH_ADMIN_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


FileServiceDep: TypeAlias = Annotated[FileService, Depends(get_file_service)]
AdminDep: TypeAlias = Annotated[None, Depends(require_admin)]
