"""
Persistence for accounting documents and external tasks.
Orchestrators only talk to the database through this class.
"""

import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import REPROCESSABLE_STATUSES, TaskStatus, TaskType
from app.models.tables import AccountingDocument, ExternalTask

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class DocumentRepository:
    """Async data access for the accounting pipeline."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Documents ────────────────────────────────────────────

    async def create_document(self, **fields) -> AccountingDocument:
        """Insert a document record and commit it."""
        now = _now()
        doc = AccountingDocument(id=uuid.uuid4(), created_at=now, updated_at=now, **fields)
        self.session.add(doc)
        await self.session.commit()
        logger.info("document_record_created", document_id=str(doc.id),
                    status=doc.processing_status)
        return doc

    async def save(self, doc: AccountingDocument) -> None:
        """Commit pending changes to a document."""
        doc.updated_at = _now()
        self.session.add(doc)
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def get_document(self, document_id: str) -> Optional[AccountingDocument]:
        doc_uuid = _parse_uuid(document_id)
        if doc_uuid is None:
            return None
        return await self.session.get(AccountingDocument, doc_uuid)

    async def list_reprocessable(
        self,
        company: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Sequence[AccountingDocument]:
        """Documents in stored/uploaded/failed status, oldest first."""
        query = select(AccountingDocument).where(
            AccountingDocument.processing_status.in_([s.value for s in REPROCESSABLE_STATUSES])
        )
        if company:
            query = query.where(AccountingDocument.company == company)
        query = query.order_by(AccountingDocument.created_at)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return result.scalars().all()

    async def list_by_company(self, company: str) -> Sequence[AccountingDocument]:
        result = await self.session.execute(
            select(AccountingDocument)
            .where(AccountingDocument.company == company)
            .order_by(AccountingDocument.year.desc(), AccountingDocument.created_at.desc())
        )
        return result.scalars().all()

    async def list_for_task(
        self,
        remote_task_id: str,
        statuses: Sequence[str],
    ) -> Sequence[AccountingDocument]:
        result = await self.session.execute(
            select(AccountingDocument).where(
                AccountingDocument.external_task_id == remote_task_id,
                AccountingDocument.processing_status.in_(list(statuses)),
            )
        )
        return result.scalars().all()

    async def count_by_status(self, company: Optional[str] = None) -> dict[str, int]:
        query = select(AccountingDocument.processing_status, func.count()).group_by(
            AccountingDocument.processing_status
        )
        if company:
            query = query.where(AccountingDocument.company == company)
        result = await self.session.execute(query)
        return {status: count for status, count in result.all()}

    async def delete_document(self, doc: AccountingDocument) -> None:
        await self.session.delete(doc)
        await self.session.commit()

    # ── External tasks ───────────────────────────────────────

    async def find_active_task(self, company: str) -> Optional[ExternalTask]:
        """Latest non-failed accounting task for a company."""
        result = await self.session.execute(
            select(ExternalTask)
            .where(
                ExternalTask.task_type == TaskType.ACCOUNTING.value,
                ExternalTask.company == company,
                ExternalTask.status != TaskStatus.FAILED.value,
            )
            .order_by(ExternalTask.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_or_create_task(
        self,
        company: str,
        create_remote: Callable[[], Awaitable[str]],
    ) -> ExternalTask:
        """
        Return the company's live task, creating it if none exists.

        The insert is guarded by the unique partial index on
        (task_type, company), so two concurrent uploads can never both
        register a task. The loser re-reads the winner's row.
        """
        existing = await self.find_active_task(company)
        if existing is not None:
            return existing

        remote_task_id = await create_remote()
        now = _now()
        stmt = (
            pg_insert(ExternalTask)
            .values(
                id=uuid.uuid4(),
                remote_task_id=remote_task_id,
                task_type=TaskType.ACCOUNTING.value,
                company=company,
                status=TaskStatus.PENDING.value,
                input_data={"company": company, "createdAt": now.isoformat()},
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(
                index_elements=["task_type", "company"],
                index_where=ExternalTask.status != TaskStatus.FAILED.value,
            )
            .returning(ExternalTask.id)
        )
        result = await self.session.execute(stmt)
        inserted_id = result.scalar_one_or_none()
        await self.session.commit()

        if inserted_id is None:
            logger.warning("task_claim_lost", company=company,
                           orphaned_remote_task_id=remote_task_id)
            winner = await self.find_active_task(company)
            if winner is None:
                raise RuntimeError(f"No active task for {company} after conflicting insert")
            return winner

        logger.info("task_registered", company=company, remote_task_id=remote_task_id)
        return await self.session.get(ExternalTask, inserted_id)

    async def get_task_by_remote_id(self, remote_task_id: str) -> Optional[ExternalTask]:
        result = await self.session.execute(
            select(ExternalTask)
            .where(ExternalTask.remote_task_id == remote_task_id)
            .order_by(ExternalTask.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def save_task(self, task: ExternalTask) -> None:
        task.updated_at = _now()
        self.session.add(task)
        await self.session.commit()
