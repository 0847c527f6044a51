#!/usr/bin/env python
"""
Remove expired files from blob storage and the database.

Downloads already refuse expired files and evict them on access; this
script reclaims storage for expired files nobody asks for again.
Run it periodically (cron, systemd timer, scheduled task).

Usage:
    PYTHONPATH=.
    python scripts/purge_expired.py
    python scripts/purge_expired.py --dry-run
"""

import argparse
import sys

from sqlmodel import Session

from api.files.exceptions import StoreError
from api.files.repository import SQLMetadataStore
from api.files.services import FileService
from core.config import get_settings
from core.db import create_db_and_tables, get_engine
from core.logger import logger
from core.security import LinkSigner
from core.storage import create_blob_store


def build_service(session: Session) -> FileService:
    """Wire a FileService from the application settings"""
    settings = get_settings()
    if not settings.FILES_STASH_HMAC_KEY:
        raise SystemExit("FILES_STASH_HMAC_KEY is not configured")
    return FileService(
        blob_store=create_blob_store(settings),
        metadata_store=SQLMetadataStore(session),
        signer=LinkSigner(settings.FILES_STASH_HMAC_KEY),
        ttl=settings.FILE_TTL,
        link_prefix=settings.DOWNLOAD_PATH_PREFIX,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Purge expired files")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List expired files without deleting them",
    )
    args = parser.parse_args(argv)

    create_db_and_tables()
    with Session(get_engine()) as session:
        service = build_service(session)
        try:
            if args.dry_run:
                expired = service.list_expired()
                for record in expired:
                    logger.info(
                        "Would purge %s (%r, expired %s)", record.id, record.name, record.expires_at
                    )
                logger.info("%d expired file(s) found", len(expired))
                return 0

            service.purge_expired()
        except StoreError as exc:
            logger.error("Purge failed: %s", exc)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
