"""
Path and URL generation for uploaded accounting files.
The same object path is used in every store a file is written to.
"""

import mimetypes
import re
import time
from pathlib import Path
from typing import Optional

from app.config import settings

_HANDLE_RE = re.compile(r"^[0-9a-f]{32}$")


def file_extension(filename: Optional[str], default: str = "pdf") -> str:
    """Lower-cased extension without the dot."""
    if not filename or "." not in filename:
        return default
    ext = filename.rsplit(".", 1)[-1].strip().lower()
    return ext or default


def upload_object_path(
    company: str,
    year: int,
    month: str,
    filename: Optional[str],
    timestamp_ms: Optional[int] = None,
) -> str:
    """accounting/{company}/{year}/{month}/{epoch_ms}.{ext}"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"accounting/{company}/{year}/{month}/{timestamp_ms}.{file_extension(filename)}"


def guess_content_type(filename: Optional[str]) -> str:
    if not filename:
        return "application/octet-stream"
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


def is_valid_handle(handle: str) -> bool:
    return bool(_HANDLE_RE.match(handle or ""))


def primary_file_url(handle: str) -> str:
    """Route that streams a primary-storage blob back to clients."""
    return f"{settings.PRIMARY_FILE_URL_PREFIX}/{handle}"


def blob_data_path(root: Path, handle: str) -> Path:
    return root / handle[:2] / f"{handle}.bin"


def blob_meta_path(root: Path, handle: str) -> Path:
    return root / handle[:2] / f"{handle}.json"
