"""Local blob storage for uploaded documents.

Files are stored as ``<upload_dir>/<owner>/<uuid><ext>``. Only the path
relative to ``upload_dir`` is persisted on the document row.
"""

import asyncio
import re
import uuid
from dataclasses import dataclass
from pathlib import Path

import structlog

from src.domains.compliance.errors import ValidationFailed
from src.shared.mime import base_mime_type

logger = structlog.get_logger()

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


@dataclass(frozen=True)
class StoredBlob:
    storage_path: str
    size: int


def validate_upload(
    filename: str,
    content: bytes,
    mime_type: str,
    max_size: int,
    allowed_mime_types: list[str],
) -> None:
    """Reject empty or oversized files and mime types outside the whitelist.

    Mime type parameters such as ``charset`` are ignored for the whitelist.
    """
    if not filename or not filename.strip():
        raise ValidationFailed("Uploaded file has no filename")
    if not content:
        raise ValidationFailed("Uploaded file is empty", filename=filename)
    if len(content) > max_size:
        raise ValidationFailed(
            f"File size {len(content)} bytes exceeds maximum {max_size} bytes",
            filename=filename,
        )
    allowed = {base_mime_type(allowed_type) for allowed_type in allowed_mime_types}
    if base_mime_type(mime_type) not in allowed:
        raise ValidationFailed(f"File type '{mime_type}' not allowed", filename=filename)


class LocalBlobStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, storage_path: str) -> Path:
        path = (self.root / storage_path).resolve()
        if not path.is_relative_to(self.root):
            raise ValueError(f"storage path escapes upload root: {storage_path}")
        return path

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def save(self, owner: str, filename: str, content: bytes) -> StoredBlob:
        extension = _UNSAFE.sub("", Path(filename).suffix.lstrip(".")).lower() or "bin"
        storage_path = f"{_UNSAFE.sub('_', owner)}/{uuid.uuid4()}.{extension}"
        await asyncio.to_thread(self._write, self._resolve(storage_path), content)
        logger.info("blob_saved", storage_path=storage_path, size=len(content))
        return StoredBlob(storage_path=storage_path, size=len(content))

    async def read(self, storage_path: str) -> bytes:
        return await asyncio.to_thread(self._resolve(storage_path).read_bytes)

    async def delete(self, storage_path: str) -> None:
        path = self._resolve(storage_path)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.info("blob_deleted", storage_path=storage_path)
