"""
/api/v1/jobs endpoints.
Background reprocessing, queue management and job status.
"""

from fastapi import APIRouter, Depends, HTTPException
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job
from rq.worker import Worker

from app.config import settings
from app.dependencies import verify_api_key
from app.schemas.jobs import JobEnqueued, JobStatus, QueueStats, ReprocessJobRequest
from app.worker.jobs import enqueue_reprocess

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(verify_api_key)])


def _get_redis() -> Redis:
    """Get a Redis connection."""
    return Redis.from_url(settings.REDIS_URL)


@router.post("/reprocess", response_model=JobEnqueued, status_code=202)
async def enqueue_reprocess_job(body: ReprocessJobRequest):
    """Queue a reprocessing batch for the worker."""
    try:
        job_id = enqueue_reprocess(document_id=body.document_id, company=body.company)
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")
    return JobEnqueued(job_id=job_id, queue_name=settings.QUEUE_NAME)


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats():
    """Get current queue statistics."""
    try:
        conn = _get_redis()
        q = Queue(settings.QUEUE_NAME, connection=conn)
        workers = Worker.all(connection=conn)

        return QueueStats(
            queue_name=settings.QUEUE_NAME,
            queued=len(q),
            started=q.started_job_registry.count,
            finished=q.finished_job_registry.count,
            failed=q.failed_job_registry.count,
            deferred=q.deferred_job_registry.count,
            workers=len(workers),
        )
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")


@router.get("/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    """Get the status of a reprocessing job."""
    try:
        job = Job.fetch(job_id, connection=_get_redis())
    except NoSuchJobError:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")

    args = list(job.args or []) + [None, None]
    return JobStatus(
        job_id=job_id,
        document_id=args[0],
        company=args[1],
        status=str(job.get_status()),
        enqueued_at=job.enqueued_at,
        started_at=job.started_at,
        ended_at=job.ended_at,
        error_message=str(job.exc_info) if job.exc_info else None,
        result=job.result if job.is_finished else None,
    )
