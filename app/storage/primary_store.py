"""
Primary blob store for uploaded accounting files.
Local filesystem (volume mount), addressed by an opaque handle.
Every blob has a JSON sidecar holding filename, content type and metadata.
"""

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog

from app.config import settings
from app.storage.errors import BlobNotFoundError, PrimaryStorageError
from app.storage.paths import (
    blob_data_path,
    blob_meta_path,
    is_valid_handle,
    primary_file_url,
)

logger = structlog.get_logger(__name__)


@dataclass
class BlobInfo:
    handle: str
    filename: str
    content_type: str
    length: int
    uploaded_at: str
    metadata: dict = field(default_factory=dict)


class PrimaryBlobStore:
    """
    Put/get/info/delete binary blobs.
    Handles are 32 hex characters; anything else is treated as unknown.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.PRIMARY_STORAGE_ROOT)

    def put(
        self,
        data: bytes,
        filename: str,
        content_type: str,
        metadata: Optional[dict] = None,
    ) -> BlobInfo:
        """Store bytes under a new handle. Raises PrimaryStorageError."""
        handle = uuid.uuid4().hex
        info = BlobInfo(
            handle=handle,
            filename=filename,
            content_type=content_type or "application/octet-stream",
            length=len(data),
            uploaded_at=datetime.now(timezone.utc).isoformat(),
            metadata=metadata or {},
        )
        data_path = blob_data_path(self.root, handle)
        try:
            data_path.parent.mkdir(parents=True, exist_ok=True)
            data_path.write_bytes(data)
            blob_meta_path(self.root, handle).write_text(
                json.dumps(asdict(info), default=str), encoding="utf-8"
            )
        except OSError as e:
            # Don't leave a data file without its sidecar
            if data_path.exists():
                data_path.unlink()
            raise PrimaryStorageError(f"Write failed for {filename}: {e}") from e

        logger.info("blob_saved", handle=handle, filename=filename, size_bytes=len(data))
        return info

    def info(self, handle: str) -> Optional[BlobInfo]:
        """Blob metadata, or None when the handle is unknown."""
        if not is_valid_handle(handle):
            return None
        meta_path = blob_meta_path(self.root, handle)
        if not meta_path.exists():
            return None
        try:
            raw = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PrimaryStorageError(f"Unreadable metadata for {handle}: {e}") from e
        return BlobInfo(**raw)

    def get(self, handle: str) -> tuple[bytes, BlobInfo]:
        """Load a blob. Raises BlobNotFoundError for unknown handles."""
        info = self.info(handle)
        data_path = blob_data_path(self.root, handle) if info else None
        if info is None or not data_path.exists():
            raise BlobNotFoundError(handle)
        try:
            return data_path.read_bytes(), info
        except OSError as e:
            raise PrimaryStorageError(f"Read failed for {handle}: {e}") from e

    def delete(self, handle: str) -> bool:
        """Delete a blob. Returns True if it existed."""
        if not is_valid_handle(handle):
            return False
        data_path = blob_data_path(self.root, handle)
        meta_path = blob_meta_path(self.root, handle)
        existed = data_path.exists() or meta_path.exists()
        data_path.unlink(missing_ok=True)
        meta_path.unlink(missing_ok=True)
        if existed:
            logger.info("blob_deleted", handle=handle)
        return existed

    def file_url(self, handle: str) -> str:
        return primary_file_url(handle)
