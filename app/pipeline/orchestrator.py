"""
Reprocessing orchestrator: runs stored documents through AI extraction.

Per document: RETRIEVE → MARK PROCESSING → EXTRACT → RECONCILE → PERSIST

Documents are processed one at a time and in isolation; a failure marks
that record failed and the batch moves on.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

import structlog

from app.config import settings
from app.engines.base import (
    ERR_AI_API,
    ERR_AI_AUTH,
    ERR_AI_BAD_REQUEST,
    ERR_AI_NETWORK,
    ERR_AI_RATE_LIMIT,
    ERR_AI_RESPONSE,
    EngineError,
    ExtractionEngine,
)
from app.models.enums import DocumentType, ProcessingStatus
from app.models.repository import DocumentRepository
from app.models.tables import AccountingDocument
from app.observability.logging import bind_document_context, clear_document_context
from app.observability.metrics import (
    document_processing_duration_seconds,
    documents_reprocessed_total,
)
from app.pipeline.reconciliation import build_analysis
from app.pipeline.retrieval import RetrievalChain, RetrievalExhaustedError

logger = structlog.get_logger(__name__)

# error_code -> short label used in error messages
AI_ERROR_LABELS = {
    ERR_AI_AUTH: "AI authentication failed",
    ERR_AI_RATE_LIMIT: "AI rate limit exceeded",
    ERR_AI_BAD_REQUEST: "AI rejected the document",
    ERR_AI_NETWORK: "AI service unreachable",
    ERR_AI_API: "AI service error",
    ERR_AI_RESPONSE: "AI response unusable",
}


class PipelineError(Exception):
    """Reprocessing run could not start."""

    def __init__(self, message: str, error_code: str = "ERR_PIPELINE"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class DocumentNotFoundError(PipelineError):
    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} not found", "ERR_DOC_NOT_FOUND")
        self.document_id = document_id


class ExtractionNotConfiguredError(PipelineError):
    def __init__(self, engine_name: str):
        super().__init__(
            f"Document processing service not configured ({engine_name} has no API key)",
            "ERR_AI_NOT_CONFIGURED",
        )


@dataclass
class ItemResult:
    document_id: str
    status: str  # success | error
    pl_statement: Optional[dict] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"documentId": self.document_id, "status": self.status}
        if self.pl_statement is not None:
            body["plStatement"] = self.pl_statement
        if self.error is not None:
            body["error"] = self.error
        return body


@dataclass
class ReprocessReport:
    results: list[ItemResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.results if r.status == "success")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == "error")

    @property
    def message(self) -> str:
        if not self.results:
            return "No documents to reprocess"
        return f"Processed {self.processed} documents successfully, {self.failed} failed"

    def to_dict(self) -> dict:
        return {
            "success": True,
            "message": self.message,
            "processed": self.processed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


def describe_engine_error(error: EngineError) -> str:
    label = AI_ERROR_LABELS.get(error.error_code, "AI extraction failed")
    return f"{label}: {error.message}"


class ReprocessingPipeline:
    """Selects eligible documents and runs each through extraction."""

    def __init__(
        self,
        repository: DocumentRepository,
        engine: ExtractionEngine,
        chain: RetrievalChain,
        batch_limit: Optional[int] = None,
    ):
        self.repository = repository
        self.engine = engine
        self.chain = chain
        self.batch_limit = batch_limit or settings.REPROCESS_BATCH_LIMIT

    async def select(
        self,
        document_id: Optional[str] = None,
        company: Optional[str] = None,
    ) -> list[AccountingDocument]:
        """
        Explicit id: that document, whatever its status.
        Company: all its eligible documents.
        Neither: up to batch_limit eligible documents, oldest first.
        """
        if document_id:
            doc = await self.repository.get_document(document_id)
            if doc is None:
                raise DocumentNotFoundError(document_id)
            return [doc]
        if company:
            return list(await self.repository.list_reprocessable(company=company))
        return list(await self.repository.list_reprocessable(limit=self.batch_limit))

    async def run(
        self,
        document_id: Optional[str] = None,
        company: Optional[str] = None,
    ) -> ReprocessReport:
        """Raises ExtractionNotConfiguredError or DocumentNotFoundError."""
        if not self.engine.is_configured:
            raise ExtractionNotConfiguredError(self.engine.engine_name)

        documents = await self.select(document_id=document_id, company=company)
        logger.info("reprocess_started", count=len(documents), company=company,
                    document_id=document_id, engine=self.engine.engine_name)

        report = ReprocessReport()
        for doc in documents:
            report.results.append(await self.process_document(doc))

        logger.info("reprocess_finished", processed=report.processed, failed=report.failed)
        return report

    async def process_document(self, doc: AccountingDocument) -> ItemResult:
        """Never raises for per-document failures; they land on the record."""
        document_id = str(doc.id)
        started_at = time.time()
        bind_document_context(document_id, doc.company)
        try:
            # ── Stage 1: RETRIEVE ──
            try:
                retrieved = await self.chain.retrieve(doc)
            except RetrievalExhaustedError as e:
                return await self._fail(doc, document_id, str(e), outcome="retrieval_failed")

            # ── Stage 2: MARK PROCESSING ──
            doc.processing_status = ProcessingStatus.PROCESSING.value
            await self.repository.save(doc)

            # ── Stage 3: EXTRACT ──
            document_type = doc.document_type or DocumentType.BANK_STATEMENT.value
            try:
                text = await self.engine.extract_document(
                    content=retrieved.content,
                    filename=doc.original_filename or "document",
                    content_type=doc.content_type or retrieved.content_type,
                    document_type=document_type,
                    company=doc.company,
                    month=doc.month,
                    year=doc.year,
                )
            except EngineError as e:
                logger.error("extraction_failed", error_code=e.error_code, error=e.message)
                return await self._fail(doc, document_id, describe_engine_error(e),
                                        outcome="ai_error")

            # ── Stage 4: RECONCILE ──
            analysis = build_analysis(text, document_type)

            # ── Stage 5: PERSIST ──
            record = analysis.to_record()
            doc.analysis_result = record
            doc.processing_status = ProcessingStatus.COMPLETED.value
            doc.error_message = None
            await self.repository.save(doc)

            documents_reprocessed_total.labels(outcome="success").inc()
            logger.info("document_reprocessed", source=retrieved.source,
                        pl_source=analysis.pl_source,
                        net_income=analysis.pl_statement.net_income)
            return ItemResult(document_id, "success", pl_statement=record["plStatement"])

        except Exception as e:
            logger.error("document_reprocess_failed", error=str(e), exc_info=True)
            await self.repository.rollback()
            return await self._fail(doc, document_id, str(e) or type(e).__name__,
                                    outcome="error")
        finally:
            document_processing_duration_seconds.observe(time.time() - started_at)
            clear_document_context()

    async def _fail(self, doc: AccountingDocument, document_id: str, message: str,
                    outcome: str) -> ItemResult:
        # doc may be expired after a rollback; only write to it
        doc.processing_status = ProcessingStatus.FAILED.value
        doc.error_message = message
        await self.repository.save(doc)
        documents_reprocessed_total.labels(outcome=outcome).inc()
        return ItemResult(document_id, "error", error=message)
