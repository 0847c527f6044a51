"""
Define application startup and shutdown procedures
"""

from contextlib import asynccontextmanager
import re
from fastapi import FastAPI
from core.config import get_settings
from core.db import create_db_and_tables
from core.logger import logger
from core.storage import S3BlobStore, create_blob_store


def _log_setting(key: str, value):
    """Log a setting, masking sensitive values like tokens and keys"""
    if any(word in key for word in ("PASSWORD", "SECRET", "TOKEN", "KEY")) and value is not None:
        logger.info("  %s: %s", key, "*****")
    elif "SQLALCHEMY_DATABASE_URI" in key and value is not None:
        # Mask password in database URI if present
        masked_value = re.sub(r"://(.*?):(.*?)@", r"://\1:*****@", value)
        logger.info("  %s: %s", key, masked_value)
    else:
        logger.info("  %s: %s", key, value)


# Handle startup/shutdown tasks
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("In lifespan...starting up")

    settings = get_settings()

    logger.info("Configuration Settings:")
    # Computed fields don't appear in vars()
    computed_fields = {
        "SQLALCHEMY_DATABASE_URI": settings.SQLALCHEMY_DATABASE_URI,
        "FILES_STASH_ADMIN_TOKEN": settings.FILES_STASH_ADMIN_TOKEN,
        "FILES_STASH_HMAC_KEY": settings.FILES_STASH_HMAC_KEY,
    }
    for key, value in computed_fields.items():
        _log_setting(key, value)
    for key, value in vars(settings).items():
        _log_setting(key, value)

    if not settings.FILES_STASH_ADMIN_TOKEN or not settings.FILES_STASH_HMAC_KEY:
        raise RuntimeError(
            "FILES_STASH_ADMIN_TOKEN and FILES_STASH_HMAC_KEY must be configured"
        )

    logger.info("Creating database tables...")
    create_db_and_tables()

    blob_store = create_blob_store(settings)
    if isinstance(blob_store, S3BlobStore):
        logger.info("Checking storage bucket %s...", blob_store.bucket_name)
        blob_store.ensure_bucket()
    else:
        logger.info("Storing files under %s", blob_store.data_dir.resolve())

    logger.info("In lifespan...yield")
    try:
        yield
    finally:
        # Shutdown
        logger.info("In lifespan...shutting down")
