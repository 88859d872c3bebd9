"""
Pydantic schemas for the /api/v1/jobs endpoints.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class ReprocessJobRequest(BaseModel):
    document_id: Optional[str] = None
    company: Optional[str] = None


class JobEnqueued(BaseModel):
    job_id: str
    queue_name: str
    status: str = "queued"


class JobStatus(BaseModel):
    job_id: str
    status: str
    document_id: Optional[str] = None
    company: Optional[str] = None
    enqueued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Any] = None


class QueueStats(BaseModel):
    queue_name: str
    queued: int
    started: int
    finished: int
    failed: int
    deferred: int
    workers: int
