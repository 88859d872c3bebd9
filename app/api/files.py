"""
Serves files from the primary blob store.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from app.config import settings
from app.dependencies import get_primary_store
from app.storage.errors import BlobNotFoundError
from app.storage.primary_store import PrimaryBlobStore

router = APIRouter(prefix=settings.PRIMARY_FILE_URL_PREFIX, tags=["files"])


@router.get("/{handle}")
async def get_primary_file(
    handle: str,
    primary: PrimaryBlobStore = Depends(get_primary_store),
):
    """Stream a stored blob back with its original content type."""
    try:
        content, info = primary.get(handle)
    except BlobNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")

    return Response(
        content=content,
        media_type=info.content_type,
        headers={
            "Cache-Control": "public, max-age=31536000",
        },
    )
