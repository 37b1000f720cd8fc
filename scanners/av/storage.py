"""Transient on-disk storage for uploads awaiting a scan.

Files are named by :mod:`tempfile` inside the configured upload directory, so the
client's filename never reaches the filesystem or the scanner command line.
"""
from __future__ import annotations

import logging
import os
import stat
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from starlette.datastructures import UploadFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
READ_ONLY = stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH  # 0o444


class UploadTooLarge(Exception):
    def __init__(self, limit: int):
        super().__init__(f"Upload exceeds the {limit} byte limit")
        self.limit = limit


@dataclass(frozen=True)
class Upload:
    storage_path: str
    original_name: str | None
    size: int
    mime_type: str | None


async def store_upload(
    file: UploadFile, upload_dir: str | Path, max_bytes: int | None = None
) -> Upload:
    """Persist ``file`` under ``upload_dir`` and describe where it landed."""
    directory = Path(upload_dir)
    directory.mkdir(parents=True, exist_ok=True)

    size = 0
    with tempfile.NamedTemporaryFile(delete=False, dir=directory, prefix="upload-") as tmp:
        tmp_path = tmp.name
        try:
            while chunk := await file.read(CHUNK_SIZE):
                size += len(chunk)
                if max_bytes is not None and size > max_bytes:
                    raise UploadTooLarge(max_bytes)
                tmp.write(chunk)
        except BaseException:
            tmp.close()
            cleanup(tmp_path)
            raise

    logger.debug("Stored upload %r at %s (%d bytes)", file.filename, tmp_path, size)
    return Upload(
        storage_path=tmp_path,
        original_name=file.filename,
        size=size,
        mime_type=file.content_type,
    )


def harden(path: str | Path) -> None:
    """Make ``path`` read-only for everyone; failures are logged, never raised."""
    try:
        os.chmod(path, READ_ONLY)
    except OSError as exc:
        logger.warning("Failed to set %s read-only: %s", path, exc)


def cleanup(path: str | Path) -> None:
    try:
        if os.name == "nt":
            # Windows refuses to unlink read-only files.
            os.chmod(path, stat.S_IWRITE)
        os.remove(path)
    except OSError as exc:
        logger.warning("Failed to remove uploaded file %s: %s", path, exc)


@contextmanager
def scoped_upload(upload: Upload) -> Iterator[str]:
    try:
        yield upload.storage_path
    finally:
        cleanup(upload.storage_path)
