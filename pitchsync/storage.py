"""Blob storage for pitch decks and intro videos.

Files are written under ``<storage_dir>/<bucket>/<name>`` and served read-only
by the API at ``/files``. Type and size checks run before anything is written.
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from pathlib import Path

log = logging.getLogger(__name__)

MB = 1024 * 1024

PITCH_DECK_BUCKET = "pitch-deck"
PITCH_DECK_TYPES = ("application/pdf",)
PITCH_DECK_MAX_BYTES = 10 * MB

PITCH_VIDEO_BUCKET = "pitch-videos"
PITCH_VIDEO_TYPES = ("video/mp4", "video/quicktime", "video/x-msvideo")
PITCH_VIDEO_MAX_BYTES = 100 * MB
_VIDEO_EXTENSIONS = {"video/mp4": ".mp4", "video/quicktime": ".mov", "video/x-msvideo": ".avi"}

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class UploadValidationError(ValueError):
    """Wrong file type or file too large."""


class LocalBlobStore:
    def __init__(self, root: str | Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path(self, bucket: str, filename: str) -> Path:
        for part in (bucket, filename):
            if not _SAFE_NAME_RE.match(part) or ".." in part:
                raise UploadValidationError(f"Invalid storage name: {part!r}")
        return self.root / bucket / filename

    def upload(self, bucket: str, filename: str, data: bytes) -> str:
        path = self._path(bucket, filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("xb") as fh:
                fh.write(data)
        except FileExistsError:
            raise UploadValidationError(f"{bucket}/{filename} already exists") from None
        log.info("Stored %s/%s (%d bytes)", bucket, filename, len(data))
        return self.public_url(bucket, filename)

    def public_url(self, bucket: str, filename: str) -> str:
        self._path(bucket, filename)
        return f"{self.base_url}/{bucket}/{filename}"


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def _object_name(prefix: str, ext: str) -> str:
    return f"{prefix}-{_timestamp_ms()}-{uuid.uuid4().hex[:8]}{ext}"


def _check(content_type: str | None, size: int, allowed: tuple[str, ...], max_bytes: int, label: str) -> None:
    if content_type not in allowed:
        raise UploadValidationError(f"{label} must be one of: {', '.join(allowed)}")
    if size > max_bytes:
        raise UploadValidationError(f"{label} must be at most {max_bytes // MB}MB")
    if size == 0:
        raise UploadValidationError(f"{label} is empty")


def upload_pitch_deck(store: LocalBlobStore, content_type: str | None, data: bytes) -> str:
    """Store a PDF deck (at most 10MB) and return its public URL."""
    _check(content_type, len(data), PITCH_DECK_TYPES, PITCH_DECK_MAX_BYTES, "Pitch deck")
    return store.upload(PITCH_DECK_BUCKET, _object_name("pitch-deck", ".pdf"), data)


def upload_pitch_video(
    store: LocalBlobStore, filename: str | None, content_type: str | None, data: bytes,
) -> str:
    """Store an MP4/MOV/AVI video (at most 100MB) and return its public URL.

    The stored name keeps the uploaded file's extension when it has one.
    """
    _check(content_type, len(data), PITCH_VIDEO_TYPES, PITCH_VIDEO_MAX_BYTES, "Pitch video")
    ext = Path(filename or "").suffix.lower()
    if not ext or not _SAFE_NAME_RE.match(f"x{ext}"):
        ext = _VIDEO_EXTENSIONS[content_type]
    return store.upload(PITCH_VIDEO_BUCKET, _object_name("pitch-video", ext), data)
