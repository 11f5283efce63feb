"""
Storage for roster files uploaded through the API.

Uploads are written under ``IMPORTER_UPLOAD_DIR`` (relative paths resolve
inside the instance folder) with a generated name, and removed once the run
that reads them finishes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

from flask import Flask
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from roster_app.models.importer.schema import RosterKind

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_SUBDIR = "roster_uploads"
ROSTER_EXTENSIONS = frozenset({".csv", ".tsv", ".txt"})


def upload_directory(app: Flask) -> Path:
    configured = app.config.get("IMPORTER_UPLOAD_DIR")
    directory = Path(configured) if configured else Path(DEFAULT_UPLOAD_SUBDIR)
    if not directory.is_absolute():
        directory = Path(app.instance_path) / directory
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def is_roster_filename(filename: str | None) -> bool:
    return Path(secure_filename(filename or "")).suffix.lower() in ROSTER_EXTENSIONS


def upload_limit_bytes(app: Flask) -> int:
    return int(app.config.get("IMPORTER_MAX_UPLOAD_MB") or 25) * 1024 * 1024


def store_upload(file_storage: FileStorage, app: Flask, *, kind: RosterKind) -> Path:
    """Save an accepted upload as ``<kind>-<uuid><ext>`` and return its path."""

    suffix = Path(secure_filename(file_storage.filename or "")).suffix.lower()
    if suffix not in ROSTER_EXTENSIONS:
        suffix = ".csv"
    target = upload_directory(app) / f"{RosterKind(kind).value}-{uuid4().hex}{suffix}"
    file_storage.save(target)
    logger.debug("Stored roster upload at %s", target)
    return target


def discard_upload(path: Path | str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove roster upload %s: %s", path, exc)


def purge_stale_uploads(app: Flask, *, max_age: timedelta) -> int:
    """Delete stored uploads older than ``max_age``; returns how many were removed."""

    cutoff = datetime.now(timezone.utc) - max_age
    removed = 0
    for path in upload_directory(app).iterdir():
        if not path.is_file():
            continue
        try:
            modified = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
        except FileNotFoundError:
            continue
        if modified < cutoff:
            discard_upload(path)
            removed += 1
    return removed


__all__ = [
    "ROSTER_EXTENSIONS",
    "discard_upload",
    "is_roster_filename",
    "purge_stale_uploads",
    "store_upload",
    "upload_directory",
    "upload_limit_bytes",
]
