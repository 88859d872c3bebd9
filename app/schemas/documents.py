"""
Pydantic request/response schemas for the /api/v1/accounting endpoints.
Response bodies use camelCase keys.
"""

from datetime import datetime
from typing import Any, Optional

from app.models.tables import AccountingDocument
from app.schemas.analysis import CamelModel, PLStatement


# ── Request Schemas ──────────────────────────────────────────

class ReprocessRequest(CamelModel):
    """Body for POST /reprocess. Both fields optional."""
    document_id: Optional[str] = None
    company: Optional[str] = None


# ── Response Schemas ─────────────────────────────────────────

class DocumentOut(CamelModel):
    """A document record as returned to clients."""
    id: str
    company: str
    month: str
    year: int
    document_type: str
    storage_type: str
    primary_handle: Optional[str] = None
    secondary_path: Optional[str] = None
    secondary_url: Optional[str] = None
    file_url: Optional[str] = None
    original_filename: Optional[str] = None
    content_type: Optional[str] = None
    file_size_bytes: Optional[int] = None
    manus_task_id: Optional[str] = None
    processing_status: str
    analysis_result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    uploaded_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, doc: AccountingDocument) -> "DocumentOut":
        return cls(
            id=str(doc.id),
            company=doc.company,
            month=doc.month,
            year=doc.year,
            document_type=doc.document_type,
            storage_type=doc.storage_type,
            primary_handle=doc.primary_handle,
            secondary_path=doc.secondary_path,
            secondary_url=doc.secondary_url,
            file_url=doc.file_url,
            original_filename=doc.original_filename,
            content_type=doc.content_type,
            file_size_bytes=doc.file_size_bytes,
            manus_task_id=doc.external_task_id,
            processing_status=doc.processing_status,
            analysis_result=doc.analysis_result,
            error_message=doc.error_message,
            uploaded_by=doc.uploaded_by,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )


class PendingDocument(CamelModel):
    id: str
    company: str
    month: str
    year: int
    document_type: str
    processing_status: str
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class UploadResponse(CamelModel):
    success: bool = True
    document: DocumentOut
    storage_type: str
    manus_task_id: Optional[str] = None
    message: str
    warning: Optional[str] = None


class ReprocessItem(CamelModel):
    document_id: str
    status: str
    pl_statement: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class ReprocessResponse(CamelModel):
    success: bool = True
    message: str
    processed: int = 0
    failed: int = 0
    results: list[ReprocessItem] = []


class PendingResponse(CamelModel):
    service_configured: bool
    pending_count: int
    documents: list[PendingDocument]


class PeriodPL(CamelModel):
    """One completed document's P&L within a company report."""
    document_id: str
    month: str
    year: int
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    net_income: float = 0.0
    categories: dict[str, float] = {}
    insights: list[str] = []
    pl_source: Optional[str] = None
    confidence: Optional[str] = None


class CompanySummary(CamelModel):
    total_documents: int = 0
    processed: int = 0
    processing: int = 0
    stored: int = 0
    failed: int = 0


class CompanyReport(CamelModel):
    company: str
    company_name: str
    documents: list[DocumentOut]
    pl_statements: list[PeriodPL]
    summary: CompanySummary
    totals: PLStatement


class WebhookAck(CamelModel):
    received: bool = True
    task_id: str
    status: str
    documents_failed: int = 0
