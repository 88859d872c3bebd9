"""
Health check endpoints.
CRITICAL: /health must ALWAYS return 200 so the platform healthcheck passes.
DB and primary storage are tested but failures do not block the response.
"""

import os

from fastapi import APIRouter
from sqlalchemy import text

from app.config import settings
from app.models.database import async_session_factory

router = APIRouter(tags=["health"])


async def _database_ok() -> tuple[bool, str | None]:
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1, None
    except Exception as e:
        return False, str(e)[:200]


def _primary_storage_ok() -> bool:
    root = settings.PRIMARY_STORAGE_ROOT
    return os.path.isdir(root) and os.access(root, os.W_OK)


@router.get("/health")
async def health_check():
    """
    Verifies the API is running, the database answers and the primary
    store is writable. ALWAYS returns 200.
    """
    db_ok, db_error = await _database_ok()
    storage_ok = _primary_storage_ok()

    response = {
        "status": "healthy" if db_ok and storage_ok else "degraded",
        "version": settings.APP_VERSION,
        "database": "connected" if db_ok else "unreachable",
        "primary_storage": "writable" if storage_ok else "unavailable",
    }
    if db_error:
        response["database_error"] = db_error

    return response


@router.get("/health/ready")
async def readiness_check():
    """
    Readiness probe: uploads need both the database and primary storage.
    """
    db_ok, _ = await _database_ok()
    return {"ready": db_ok and _primary_storage_ok()}
