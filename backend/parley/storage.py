"""Object store for message attachments.

Services depend on the ObjectStore protocol only; LocalObjectStore writes to
disk under UPLOAD_DIR and is served as static files.  Swap the implementation
to add S3/MinIO support.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from parley.config import settings
from parley.core.errors import UploadFailed, ValidationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileUpload:
    """A file received from a client, already read into memory."""

    filename: str | None
    content_type: str
    content: bytes


class ObjectStore(Protocol):
    def upload(self, content: bytes, content_type: str, folder: str, filename: str | None = None) -> dict: ...


def _uuid_filename(original: str | None) -> str:
    """Return a UUID-based filename preserving the original extension."""
    ext = Path(original).suffix.lower() if original else ""
    return f"{uuid.uuid4().hex}{ext}"


def _kind(content_type: str) -> str:
    major = content_type.split("/", 1)[0]
    return major if major in ("image", "video", "audio") else "raw"


def save_upload(content: bytes, original_filename: str | None, upload_dir: str) -> tuple[str, str]:
    """Write *content* to *upload_dir* with a UUID filename.

    Returns:
        (stored_filename, full_path)
    """
    os.makedirs(upload_dir, exist_ok=True)
    stored = _uuid_filename(original_filename)
    full_path = os.path.join(upload_dir, stored)
    with open(full_path, "wb") as fh:
        fh.write(content)
    return stored, full_path


class LocalObjectStore:
    def __init__(self, upload_dir: str | None = None, public_path: str | None = None) -> None:
        self.upload_dir = upload_dir or settings.UPLOAD_DIR
        self.public_path = (public_path or settings.PUBLIC_UPLOAD_PATH).rstrip("/")

    def upload(self, content: bytes, content_type: str, folder: str, filename: str | None = None) -> dict:
        if content_type not in settings.ALLOWED_MIME_TYPES:
            raise ValidationFailed(f"File type '{content_type}' is not allowed")
        if len(content) > settings.MAX_UPLOAD_SIZE:
            raise ValidationFailed(f"File exceeds the {settings.MAX_UPLOAD_SIZE // (1024 * 1024)} MB limit")

        try:
            stored, _ = save_upload(content, filename, os.path.join(self.upload_dir, folder))
        except OSError as exc:
            logger.error("Upload to %s failed: %s", folder, exc)
            raise UploadFailed(f"Could not store {filename or 'upload'}") from exc

        return {
            "id": Path(stored).stem,
            "url": f"{self.public_path}/{folder}/{stored}",
            "kind": _kind(content_type),
            "size": len(content),
            "content_type": content_type,
            "original_filename": filename or "upload",
        }


object_store = LocalObjectStore()


def get_object_store() -> ObjectStore:
    return object_store
