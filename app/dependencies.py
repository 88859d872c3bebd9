"""
FastAPI dependency injection.
Provides DB sessions, storage adapters, external clients and API key validation.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.engines.base import ExtractionEngine
from app.engines.claude_engine import ClaudeEngine
from app.models.database import get_session
from app.models.repository import DocumentRepository
from app.pipeline.orchestrator import ReprocessingPipeline
from app.pipeline.retrieval import build_default_chain
from app.pipeline.upload import UploadOrchestrator
from app.storage.primary_store import PrimaryBlobStore
from app.storage.secondary_store import SecondaryStore
from app.tasks.manus_client import ManusClient


# ── Singleton instances ──────────────────────────────────────
_primary_store: Optional[PrimaryBlobStore] = None
_secondary_store: Optional[SecondaryStore] = None
_task_client: Optional[ManusClient] = None
_engine: Optional[ExtractionEngine] = None


def get_primary_store() -> PrimaryBlobStore:
    """Get or create the primary blob store singleton."""
    global _primary_store
    if _primary_store is None:
        _primary_store = PrimaryBlobStore()
    return _primary_store


def get_secondary_store() -> SecondaryStore:
    global _secondary_store
    if _secondary_store is None:
        _secondary_store = SecondaryStore()
    return _secondary_store


def get_task_client() -> ManusClient:
    global _task_client
    if _task_client is None:
        _task_client = ManusClient()
    return _task_client


def get_extraction_engine() -> ExtractionEngine:
    global _engine
    if _engine is None:
        _engine = ClaudeEngine()
    return _engine


async def get_db() -> AsyncSession:
    """Yield an async DB session."""
    async for session in get_session():
        yield session


def get_repository(db: AsyncSession = Depends(get_db)) -> DocumentRepository:
    return DocumentRepository(db)


def get_upload_orchestrator(
    repository: DocumentRepository = Depends(get_repository),
    primary: PrimaryBlobStore = Depends(get_primary_store),
    secondary: SecondaryStore = Depends(get_secondary_store),
    task_client: ManusClient = Depends(get_task_client),
) -> UploadOrchestrator:
    return UploadOrchestrator(repository, primary, secondary, task_client)


def get_reprocessing_pipeline(
    repository: DocumentRepository = Depends(get_repository),
    engine: ExtractionEngine = Depends(get_extraction_engine),
    primary: PrimaryBlobStore = Depends(get_primary_store),
    secondary: SecondaryStore = Depends(get_secondary_store),
) -> ReprocessingPipeline:
    return ReprocessingPipeline(
        repository, engine, build_default_chain(primary, secondary),
        batch_limit=settings.REPROCESS_BATCH_LIMIT,
    )


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key


async def get_acting_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> Optional[str]:
    """Id of the signed-in user, forwarded by the portal."""
    return x_user_id
