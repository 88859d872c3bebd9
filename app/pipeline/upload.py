"""
Upload orchestration: store the file, create the document record and hand
the file to the external task service.

Storage success is the success criterion. The primary write must succeed;
the secondary write and the task hand-off only ever degrade the result.
"""

import time
from dataclasses import dataclass
from typing import Optional

import structlog

from app.models.enums import (
    MONTHS,
    Company,
    DocumentType,
    ProcessingStatus,
    StorageType,
    TaskStatus,
    month_index,
)
from app.models.repository import DocumentRepository
from app.models.tables import AccountingDocument
from app.observability.metrics import (
    documents_uploaded_total,
    primary_storage_failures_total,
    secondary_storage_fallbacks_total,
    task_handoffs_total,
)
from app.storage.errors import PrimaryStorageError, SecondaryStorageError
from app.storage.paths import guess_content_type, upload_object_path
from app.storage.primary_store import PrimaryBlobStore
from app.storage.secondary_store import SecondaryStore
from app.tasks.manus_client import ManusClient, TaskServiceError

logger = structlog.get_logger(__name__)

MSG_SENT = "Document uploaded and sent to Manus AI for processing"
MSG_STORED = "Document uploaded to storage. Manus AI processing is not configured."
MSG_STORED_NO_TASK = "Document uploaded to storage. Manus AI task could not be created."
MSG_STORED_HANDOFF_FAILED = "Document uploaded to storage. Sending to Manus AI failed."
WARN_NOT_CONFIGURED = (
    "MANUS_API_KEY is not set or invalid. Please configure a valid Manus API token "
    "to enable AI processing."
)
WARN_TASK_CREATE_FAILED = (
    "Document uploaded to storage but a Manus AI task could not be created. "
    "Processing can be retried."
)
WARN_HANDOFF_FAILED = (
    "Document uploaded to storage but failed to send to Manus AI. Processing can be retried."
)


class UploadValidationError(Exception):
    """Rejected before any side effect. details maps field name -> present."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


@dataclass
class UploadOutcome:
    document: AccountingDocument
    storage_type: str
    message: str
    external_task_id: Optional[str] = None
    warning: Optional[str] = None


def validate_upload(
    content: Optional[bytes],
    company: Optional[str],
    month: Optional[str],
    year,
    document_type: Optional[str],
) -> tuple[int, str]:
    """Check inputs; returns the year as an int and the canonical month name."""
    if content is None:
        raise UploadValidationError("No file provided")
    if len(content) == 0:
        raise UploadValidationError("Uploaded file is empty")

    details = {
        "company": bool(company),
        "month": bool(month),
        "year": year not in (None, ""),
        "documentType": bool(document_type),
    }
    if not all(details.values()):
        raise UploadValidationError("Missing required fields", details)

    if company not in {c.value for c in Company}:
        raise UploadValidationError(f"Unknown company: {company}", {"company": False})
    if document_type not in {d.value for d in DocumentType}:
        raise UploadValidationError(f"Unknown document type: {document_type}",
                                    {"documentType": False})
    index = month_index(month)
    if index < 0:
        raise UploadValidationError(f"Unknown month: {month}", {"month": False})
    try:
        year_int = int(year)
    except (TypeError, ValueError):
        raise UploadValidationError(
            f"Year must be an integer, got {year!r}", {"year": False}
        ) from None
    return year_int, MONTHS[index]


class UploadOrchestrator:
    """Runs a single upload end to end."""

    def __init__(
        self,
        repository: DocumentRepository,
        primary: PrimaryBlobStore,
        secondary: SecondaryStore,
        task_client: ManusClient,
    ):
        self.repository = repository
        self.primary = primary
        self.secondary = secondary
        self.task_client = task_client

    async def upload(
        self,
        content: Optional[bytes],
        filename: Optional[str],
        content_type: Optional[str],
        company: Optional[str],
        month: Optional[str],
        year,
        document_type: Optional[str],
        uploaded_by: Optional[str] = None,
    ) -> UploadOutcome:
        """
        Raises UploadValidationError or PrimaryStorageError; everything
        after the primary write is recovered into the outcome.
        """
        year_int, month = validate_upload(content, company, month, year, document_type)
        filename = filename or "document.pdf"
        content_type = content_type or guess_content_type(filename)
        object_path = upload_object_path(company, year_int, month, filename,
                                         timestamp_ms=int(time.time() * 1000))
        log = logger.bind(company=company, path=object_path)

        # 1. Primary write (required)
        try:
            blob = self.primary.put(
                content, filename, content_type,
                metadata={
                    "company": company,
                    "month": month,
                    "year": year_int,
                    "documentType": document_type,
                    "path": object_path,
                    "uploadedBy": uploaded_by,
                },
            )
        except PrimaryStorageError as e:
            primary_storage_failures_total.inc()
            log.error("primary_storage_failed", error=e.message)
            raise

        storage_type = StorageType.PRIMARY.value
        file_url = self.primary.file_url(blob.handle)
        secondary_path = None
        secondary_url = None

        # 2. Secondary write (best-effort)
        if self.secondary.is_configured:
            try:
                secondary_url = await self.secondary.upload(object_path, content, content_type)
                secondary_path = object_path
                storage_type = StorageType.SECONDARY.value
                file_url = secondary_url
            except SecondaryStorageError as e:
                secondary_storage_fallbacks_total.inc()
                log.warning("secondary_storage_failed", error=e.message,
                            status_code=e.status_code)

        record_fields = dict(
            company=company,
            month=month,
            year=year_int,
            document_type=document_type,
            storage_type=storage_type,
            primary_handle=blob.handle,
            secondary_path=secondary_path,
            secondary_url=secondary_url,
            file_url=file_url,
            original_filename=filename,
            content_type=content_type,
            file_size_bytes=len(content),
            uploaded_by=uploaded_by,
        )

        # 3. No task service: stored, nothing automated follows
        if not self.task_client.is_configured:
            log.warning("task_service_not_configured")
            doc = await self.repository.create_document(
                processing_status=ProcessingStatus.STORED.value, **record_fields
            )
            task_handoffs_total.labels(outcome="not_configured").inc()
            return self._outcome(doc, storage_type, MSG_STORED, warning=WARN_NOT_CONFIGURED)

        # 4. One live task per company
        try:
            task = await self.repository.find_or_create_task(company, self._create_remote(company))
        except TaskServiceError as e:
            log.error("task_create_failed", error=str(e))
            doc = await self.repository.create_document(
                processing_status=ProcessingStatus.STORED.value, **record_fields
            )
            task_handoffs_total.labels(outcome="task_create_failed").inc()
            return self._outcome(doc, storage_type, MSG_STORED_NO_TASK,
                                 warning=WARN_TASK_CREATE_FAILED)

        doc = await self.repository.create_document(
            processing_status=ProcessingStatus.UPLOADED.value,
            external_task_id=task.remote_task_id,
            **record_fields,
        )

        # 5. Hand the file to the task
        try:
            await self.task_client.upload_file_to_task(
                task.remote_task_id, content, filename, content_type
            )
        except TaskServiceError as e:
            log.error("task_handoff_failed", document_id=str(doc.id),
                      task_id=task.remote_task_id, error=str(e))
            doc.processing_status = ProcessingStatus.FAILED.value
            doc.error_message = str(e)
            await self.repository.save(doc)
            task_handoffs_total.labels(outcome="failed").inc()
            return self._outcome(doc, storage_type, MSG_STORED_HANDOFF_FAILED,
                                 external_task_id=task.remote_task_id,
                                 warning=WARN_HANDOFF_FAILED)

        doc.processing_status = ProcessingStatus.PROCESSING.value
        await self.repository.save(doc)
        task.status = TaskStatus.PROCESSING.value
        task.accounting_document_id = doc.id
        await self.repository.save_task(task)

        task_handoffs_total.labels(outcome="sent").inc()
        log.info("document_sent_to_task", document_id=str(doc.id), task_id=task.remote_task_id)
        return self._outcome(doc, storage_type, MSG_SENT, external_task_id=task.remote_task_id)

    def _create_remote(self, company: str):
        async def create() -> str:
            remote = await self.task_client.create_accounting_task(company)
            return remote.id
        return create

    @staticmethod
    def _outcome(doc: AccountingDocument, storage_type: str, message: str,
                 external_task_id: Optional[str] = None,
                 warning: Optional[str] = None) -> UploadOutcome:
        documents_uploaded_total.labels(company=doc.company, storage_type=storage_type).inc()
        return UploadOutcome(
            document=doc,
            storage_type=storage_type,
            message=message,
            external_task_id=external_task_id,
            warning=warning,
        )
