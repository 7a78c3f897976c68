"""Verification document files on local disk."""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from pathlib import Path

from errors import UploadError


logger = logging.getLogger(__name__)

ALLOWED_DOCUMENT_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}
DEFAULT_DOCUMENT_TYPE = "business_license"
SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_file_name(file_name: str) -> str:
    name = Path(str(file_name or "")).name
    cleaned = SAFE_NAME_RE.sub("_", name).strip("._")
    return cleaned[:100] or "document"


class DocumentStorage:
    """Writes uploaded documents under `<upload_dir>/<owner_id>/`."""

    def __init__(self, upload_dir: str | Path, *, max_bytes: int) -> None:
        self.upload_dir = Path(upload_dir)
        self.max_bytes = int(max_bytes)

    def check(self, file_name: str, content_type: str | None, size_bytes: int) -> str:
        """Validate an upload and return its canonical content type."""
        suffix = Path(str(file_name or "")).suffix.lower()
        expected = ALLOWED_DOCUMENT_TYPES.get(suffix)
        if not expected:
            raise UploadError("Only PDF, PNG and JPG documents are accepted.")
        if content_type and content_type.split(";")[0].strip().lower() not in {expected, "application/octet-stream"}:
            raise UploadError(f"File content type {content_type} does not match {suffix}.")
        if size_bytes <= 0:
            raise UploadError("The uploaded file is empty.")
        if size_bytes > self.max_bytes:
            raise UploadError(f"Documents must be at most {self.max_bytes // (1024 * 1024)} MB.")
        return expected

    async def write(self, owner_id: str, file_name: str, data: bytes) -> Path:
        owner_dir = self.upload_dir / sanitize_file_name(owner_id)
        target = owner_dir / f"{secrets.token_hex(8)}_{sanitize_file_name(file_name)}"
        try:
            await asyncio.to_thread(owner_dir.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, data)
        except OSError as error:
            logger.exception("Failed to store document for owner %s", owner_id)
            raise UploadError("Could not store the document. Try again.") from error
        return target

    async def remove(self, stored_path: str | Path) -> None:
        path = Path(stored_path)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError:
            logger.warning("Failed to remove stored document %s", path)
