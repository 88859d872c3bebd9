"""
Shared test fixtures.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest

from app.models.enums import (
    REPROCESSABLE_STATUSES,
    ProcessingStatus,
    StorageType,
    TaskStatus,
    TaskType,
)
from app.models.tables import AccountingDocument, ExternalTask
from app.storage.primary_store import PrimaryBlobStore
from app.storage.secondary_store import SecondaryStore
from app.tasks.manus_client import ManusClient

SUPABASE_URL = "https://proj.supabase.co"
MANUS_URL = "https://manus.test/v1"

_EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeDocumentRepository:
    """In-memory stand-in for DocumentRepository."""

    def __init__(self):
        self.documents: dict[uuid.UUID, AccountingDocument] = {}
        self.tasks: list[ExternalTask] = []
        self.remote_creations = 0
        self.rollbacks = 0
        self._clock = 0

    def _tick(self) -> datetime:
        self._clock += 1
        return _EPOCH + timedelta(seconds=self._clock)

    def add_document(self, **overrides) -> AccountingDocument:
        """Seed a record directly, bypassing the upload flow."""
        now = self._tick()
        fields = dict(
            id=uuid.uuid4(),
            company="dpm",
            month="March",
            year=2025,
            document_type="bank_statement",
            storage_type=StorageType.PRIMARY.value,
            primary_handle=None,
            secondary_path=None,
            secondary_url=None,
            file_url=None,
            original_filename="statement.pdf",
            content_type="application/pdf",
            file_size_bytes=None,
            external_task_id=None,
            processing_status=ProcessingStatus.STORED.value,
            analysis_result=None,
            error_message=None,
            uploaded_by=None,
            created_at=now,
            updated_at=now,
        )
        fields.update(overrides)
        doc = AccountingDocument(**fields)
        self.documents[doc.id] = doc
        return doc

    # ── Documents ────────────────────────────────────────────

    async def create_document(self, **fields) -> AccountingDocument:
        return self.add_document(**fields)

    async def save(self, doc: AccountingDocument) -> None:
        doc.updated_at = self._tick()
        self.documents[doc.id] = doc

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def get_document(self, document_id: str) -> Optional[AccountingDocument]:
        try:
            return self.documents.get(uuid.UUID(str(document_id)))
        except ValueError:
            return None

    async def list_reprocessable(self, company=None, limit=None):
        eligible = {s.value for s in REPROCESSABLE_STATUSES}
        docs = sorted(
            (d for d in self.documents.values()
             if d.processing_status in eligible and (company is None or d.company == company)),
            key=lambda d: d.created_at,
        )
        return docs[:limit] if limit is not None else docs

    async def list_by_company(self, company):
        return sorted(
            (d for d in self.documents.values() if d.company == company),
            key=lambda d: (d.year, d.created_at),
            reverse=True,
        )

    async def list_for_task(self, remote_task_id, statuses):
        return [d for d in self.documents.values()
                if d.external_task_id == remote_task_id and d.processing_status in statuses]

    async def count_by_status(self, company=None):
        counts: dict[str, int] = {}
        for d in self.documents.values():
            if company is None or d.company == company:
                counts[d.processing_status] = counts.get(d.processing_status, 0) + 1
        return counts

    async def delete_document(self, doc: AccountingDocument) -> None:
        self.documents.pop(doc.id, None)

    # ── External tasks ───────────────────────────────────────

    def add_task(self, company: str, remote_task_id: str,
                 status: str = TaskStatus.PENDING.value) -> ExternalTask:
        now = self._tick()
        task = ExternalTask(
            id=uuid.uuid4(), remote_task_id=remote_task_id,
            task_type=TaskType.ACCOUNTING.value, company=company, status=status,
            accounting_document_id=None, input_data={"company": company},
            result_data=None, error_message=None, created_at=now, updated_at=now,
        )
        self.tasks.append(task)
        return task

    async def find_active_task(self, company):
        live = [t for t in self.tasks
                if t.company == company and t.status != TaskStatus.FAILED.value]
        return live[-1] if live else None

    async def find_or_create_task(self, company, create_remote):
        existing = await self.find_active_task(company)
        if existing is not None:
            return existing
        remote_task_id = await create_remote()
        self.remote_creations += 1
        return self.add_task(company, remote_task_id)

    async def get_task_by_remote_id(self, remote_task_id):
        matches = [t for t in self.tasks if t.remote_task_id == remote_task_id]
        return matches[-1] if matches else None

    async def save_task(self, task: ExternalTask) -> None:
        task.updated_at = self._tick()


@pytest.fixture
def repository():
    return FakeDocumentRepository()


@pytest.fixture
def primary_store(tmp_path):
    return PrimaryBlobStore(root=str(tmp_path / "blobs"))


@pytest.fixture
def make_secondary():
    """Build a configured SecondaryStore whose HTTP calls go to handler."""
    def _make(handler, url: str = SUPABASE_URL, key: str = "service-key") -> SecondaryStore:
        return SecondaryStore(url=url, service_key=key, bucket="cadgroup-uploads",
                              transport=httpx.MockTransport(handler))
    return _make


@pytest.fixture
def unconfigured_secondary():
    return SecondaryStore(url="", service_key="", bucket="cadgroup-uploads")


@pytest.fixture
def make_task_client():
    """Build a ManusClient whose HTTP calls go to handler."""
    def _make(handler, api_key: str = "sk-test", webhook_secret: str = "whsec") -> ManusClient:
        return ManusClient(api_key=api_key, base_url=MANUS_URL, webhook_secret=webhook_secret,
                           transport=httpx.MockTransport(handler))
    return _make


@pytest.fixture
def sample_amounts():
    """Common amount string samples for testing."""
    return [
        ("1,234.56", "1234.56", False),
        ("$1,234.56", "1234.56", False),
        ("($500.00)", "-500.00", True),
        ("100.00 DR", "-100.00", True),
        ("250.00 CR", "250.00", False),
        ("-75.50", "-75.50", True),
        ("75.50-", "-75.50", True),
        ("0.01", "0.01", False),
        ("10000", "10000", False),
    ]
