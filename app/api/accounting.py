"""
/api/v1/accounting endpoints.
Upload, reprocessing, company reports, document management and task webhooks.
"""

import json
import os
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import (
    APIRouter,
    Body,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    UploadFile,
    status,
)

from app.config import settings
from app.dependencies import (
    get_acting_user,
    get_extraction_engine,
    get_primary_store,
    get_reprocessing_pipeline,
    get_repository,
    get_secondary_store,
    get_task_client,
    get_upload_orchestrator,
    verify_api_key,
)
from app.engines.base import ExtractionEngine
from app.models.enums import (
    COMPANY_NAMES,
    Company,
    ProcessingStatus,
    TaskStatus,
    month_index,
)
from app.models.repository import DocumentRepository
from app.pipeline.orchestrator import (
    DocumentNotFoundError,
    ExtractionNotConfiguredError,
    ReprocessingPipeline,
)
from app.pipeline.reconciliation import aggregate_pl_statements
from app.pipeline.upload import UploadOrchestrator, UploadValidationError
from app.schemas.documents import (
    CompanyReport,
    CompanySummary,
    DocumentOut,
    PendingDocument,
    PendingResponse,
    PeriodPL,
    ReprocessRequest,
    ReprocessResponse,
    UploadResponse,
    WebhookAck,
)
from app.storage.errors import PrimaryStorageError, SecondaryStorageError
from app.storage.primary_store import PrimaryBlobStore
from app.storage.secondary_store import SecondaryStore
from app.tasks.manus_client import ManusClient

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/accounting",
    tags=["accounting"],
    dependencies=[Depends(verify_api_key)],
)

WEBHOOK_SIGNATURE_HEADER = "X-Manus-Signature"


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED,
             response_model_exclude_none=True, response_model_by_alias=True)
async def upload_document(
    file: Optional[UploadFile] = File(None),
    company: Optional[str] = Form(None),
    month: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    documentType: Optional[str] = Form(None),
    uploaded_by: Optional[str] = Depends(get_acting_user),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
):
    """
    Store an accounting document and hand it to the task service.
    Returns 201 whenever the file is stored, even if the hand-off failed.
    """
    content = None
    if file is not None:
        allowed = {m.strip() for m in settings.ALLOWED_MIME_TYPES.split(",")}
        if file.content_type and file.content_type not in allowed:
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Unsupported file type: {file.content_type}",
            )
        content = await file.read()
        max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        if len(content) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large. Maximum: {settings.MAX_UPLOAD_SIZE_MB}MB",
            )

    try:
        outcome = await orchestrator.upload(
            content=content,
            filename=file.filename if file else None,
            content_type=file.content_type if file else None,
            company=company,
            month=month,
            year=year,
            document_type=documentType,
            uploaded_by=uploaded_by,
        )
    except UploadValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": e.message, "details": e.details},
        )
    except PrimaryStorageError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to upload file to storage", "message": e.message},
        )

    return UploadResponse(
        document=DocumentOut.from_record(outcome.document),
        storage_type=outcome.storage_type,
        manus_task_id=outcome.external_task_id,
        message=outcome.message,
        warning=outcome.warning,
    )


@router.post("/reprocess", response_model=ReprocessResponse, response_model_by_alias=True)
async def reprocess_documents(
    body: Optional[ReprocessRequest] = Body(None),
    pipeline: ReprocessingPipeline = Depends(get_reprocessing_pipeline),
):
    """Run stored documents through AI extraction, one at a time."""
    body = body or ReprocessRequest()
    try:
        report = await pipeline.run(document_id=body.document_id, company=body.company)
    except ExtractionNotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return ReprocessResponse.model_validate(report.to_dict())


@router.get("/reprocess", response_model=PendingResponse, response_model_by_alias=True)
async def list_pending(
    repository: DocumentRepository = Depends(get_repository),
    engine: ExtractionEngine = Depends(get_extraction_engine),
):
    """Documents waiting for extraction and whether extraction can run."""
    docs = await repository.list_reprocessable()
    return PendingResponse(
        service_configured=engine.is_configured,
        pending_count=len(docs),
        documents=[
            PendingDocument(
                id=str(d.id),
                company=d.company,
                month=d.month,
                year=d.year,
                document_type=d.document_type,
                processing_status=d.processing_status,
                error_message=d.error_message,
                created_at=d.created_at,
            )
            for d in docs
        ],
    )


@router.get("/companies/{company}", response_model=CompanyReport, response_model_by_alias=True)
async def company_report(
    company: str,
    repository: DocumentRepository = Depends(get_repository),
):
    """All documents for a company plus its per-period P&L, newest first."""
    try:
        company_enum = Company(company)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown company: {company}")

    docs = await repository.list_by_company(company)

    periods = []
    for doc in docs:
        analysis = doc.analysis_result or {}
        pl = analysis.get("plStatement")
        if doc.processing_status != ProcessingStatus.COMPLETED.value or not pl:
            continue
        insights = analysis.get("insights")
        periods.append(PeriodPL(
            document_id=str(doc.id),
            month=doc.month,
            year=doc.year,
            total_revenue=pl.get("totalRevenue") or 0,
            total_expenses=pl.get("totalExpenses") or 0,
            net_income=pl.get("netIncome") or 0,
            categories=pl.get("categories") or {},
            insights=insights if isinstance(insights, list) else [],
            pl_source=analysis.get("plSource"),
            confidence=analysis.get("confidence"),
        ))
    periods.sort(key=lambda p: (p.year, month_index(p.month)), reverse=True)

    counts = {s.value: 0 for s in ProcessingStatus}
    for doc in docs:
        counts[doc.processing_status] = counts.get(doc.processing_status, 0) + 1

    return CompanyReport(
        company=company,
        company_name=COMPANY_NAMES[company_enum],
        documents=[DocumentOut.from_record(d) for d in docs],
        pl_statements=periods,
        summary=CompanySummary(
            total_documents=len(docs),
            processed=counts[ProcessingStatus.COMPLETED.value],
            processing=counts[ProcessingStatus.PROCESSING.value],
            stored=counts[ProcessingStatus.STORED.value] + counts[ProcessingStatus.UPLOADED.value],
            failed=counts[ProcessingStatus.FAILED.value],
        ),
        totals=aggregate_pl_statements(
            (d.analysis_result or {}).get("plStatement") or {}
            for d in docs
            if d.processing_status == ProcessingStatus.COMPLETED.value
        ),
    )


@router.get("/documents/{document_id}", response_model=DocumentOut, response_model_by_alias=True)
async def get_document(
    document_id: str,
    repository: DocumentRepository = Depends(get_repository),
):
    doc = await repository.get_document(document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return DocumentOut.from_record(doc)


@router.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    repository: DocumentRepository = Depends(get_repository),
    primary: PrimaryBlobStore = Depends(get_primary_store),
):
    """Delete a document record and, best-effort, its primary blob."""
    doc = await repository.get_document(document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found")

    if doc.primary_handle:
        try:
            primary.delete(doc.primary_handle)
        except OSError as e:
            logger.warning("blob_delete_failed", document_id=document_id,
                           handle=doc.primary_handle, error=str(e))

    await repository.delete_document(doc)
    logger.info("document_deleted", document_id=document_id)
    return {"success": True, "message": "Document deleted successfully"}


@router.post("/tasks/webhook", response_model=WebhookAck, response_model_by_alias=True)
async def task_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias=WEBHOOK_SIGNATURE_HEADER),
    repository: DocumentRepository = Depends(get_repository),
    task_client: ManusClient = Depends(get_task_client),
):
    """Signed status callback from the task service."""
    payload = await request.body()
    if not task_client.verify_webhook_signature(payload, signature or ""):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    data = event.get("data") if isinstance(event.get("data"), dict) else event
    remote_task_id = data.get("task_id") or data.get("id")
    new_status = data.get("status")
    if not remote_task_id or new_status not in {s.value for s in TaskStatus}:
        raise HTTPException(status_code=400, detail="Webhook requires a task id and a valid status")

    task = await repository.get_task_by_remote_id(str(remote_task_id))
    if task is None:
        raise HTTPException(status_code=404, detail=f"Unknown task: {remote_task_id}")

    task.status = new_status
    if isinstance(data.get("result"), dict):
        task.result_data = data["result"]
    task.error_message = data.get("error")
    await repository.save_task(task)

    failed_docs = 0
    if new_status == TaskStatus.FAILED.value:
        docs = await repository.list_for_task(
            task.remote_task_id,
            [ProcessingStatus.UPLOADED.value, ProcessingStatus.PROCESSING.value],
        )
        for doc in docs:
            doc.processing_status = ProcessingStatus.FAILED.value
            doc.error_message = f"Manus task failed: {data.get('error') or 'no reason given'}"
            await repository.save(doc)
        failed_docs = len(docs)

    logger.info("task_webhook_received", task_id=task.remote_task_id, status=new_status,
                documents_failed=failed_docs)
    return WebhookAck(task_id=task.remote_task_id, status=new_status,
                      documents_failed=failed_docs)


@router.get("/diagnostics")
async def diagnostics(
    probe_ai: bool = False,
    repository: DocumentRepository = Depends(get_repository),
    engine: ExtractionEngine = Depends(get_extraction_engine),
    primary: PrimaryBlobStore = Depends(get_primary_store),
    secondary: SecondaryStore = Depends(get_secondary_store),
    task_client: ManusClient = Depends(get_task_client),
):
    """
    Configuration presence and storage probes. Never returns secrets.
    The AI round trip only runs with ?probe_ai=true.
    """
    recommendations = []

    ai = {"engine": engine.engine_name, "model": engine.engine_version,
          "configured": engine.is_configured}
    if not engine.is_configured:
        recommendations.append(
            "Set ANTHROPIC_API_KEY in your environment variables to enable AI processing."
        )
    elif probe_ai:
        ai["healthy"] = await engine.health_check()
        if not ai["healthy"]:
            recommendations.append("AI health check failed. Verify ANTHROPIC_API_KEY is valid.")

    root = str(primary.root)
    primary_status = {
        "root": root,
        "exists": os.path.isdir(root),
        "writable": os.path.isdir(root) and os.access(root, os.W_OK),
    }
    if not primary_status["writable"]:
        recommendations.append(f"Primary storage root {root} is missing or not writable.")

    secondary_status = secondary.status()
    if secondary.is_configured:
        try:
            await secondary.list(limit=1)
            secondary_status["reachable"] = True
        except SecondaryStorageError as e:
            secondary_status["reachable"] = False
            secondary_status["error"] = e.message
            recommendations.append("Secondary storage is configured but unreachable.")
    else:
        recommendations.append(
            "Secondary storage is not configured; files are served from primary storage only."
        )

    if not task_client.is_configured:
        recommendations.append("Set MANUS_API_KEY to hand uploads to the task service.")

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "ai": ai,
        "taskService": {"configured": task_client.is_configured,
                        "webhookSecret": bool(task_client.webhook_secret)},
        "storage": {"primary": primary_status, "secondary": secondary_status},
        "documents": await repository.count_by_status(),
        "recommendations": recommendations,
    }
