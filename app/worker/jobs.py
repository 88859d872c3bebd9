"""
RQ job functions for background reprocessing.
These are the entry points that the worker calls.
"""

from typing import Optional

import structlog
from redis import Redis
from rq import Queue

from app.config import settings

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the reprocessing job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_reprocess(document_id: Optional[str] = None, company: Optional[str] = None) -> str:
    """
    Enqueue a reprocessing batch (one document, one company, or the global batch).
    Returns the job ID.
    """
    q = get_queue()
    job = q.enqueue(
        reprocess_job,
        document_id,
        company,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("job_enqueued", document_id=document_id, company=company, job_id=job.id)
    return job.id


def reprocess_job(document_id: Optional[str] = None, company: Optional[str] = None) -> dict:
    """
    Main job function: run a reprocessing batch.
    This runs inside the RQ worker process.
    """
    import asyncio

    logger.info("job_started", document_id=document_id, company=company)

    try:
        result = asyncio.run(_reprocess_async(document_id, company))
        logger.info("job_completed", processed=result.get("processed"),
                    failed=result.get("failed"))
        return result
    except Exception as e:
        logger.error("job_failed", document_id=document_id, company=company, error=str(e))
        raise


async def _reprocess_async(document_id: Optional[str], company: Optional[str]) -> dict:
    """Build the pipeline on a fresh session and run it."""
    from app.dependencies import get_primary_store, get_secondary_store
    from app.engines.claude_engine import ClaudeEngine
    from app.models.database import async_session_factory, close_db
    from app.models.repository import DocumentRepository
    from app.pipeline.orchestrator import ReprocessingPipeline
    from app.pipeline.retrieval import build_default_chain

    try:
        async with async_session_factory() as session:
            pipeline = ReprocessingPipeline(
                DocumentRepository(session),
                ClaudeEngine(),
                build_default_chain(get_primary_store(), get_secondary_store()),
            )
            report = await pipeline.run(document_id=document_id, company=company)
            return report.to_dict()
    finally:
        # Each job runs in its own event loop; pooled connections can't outlive it
        await close_db()
