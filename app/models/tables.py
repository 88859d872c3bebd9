"""
SQLAlchemy ORM models.
Column names match the PostgreSQL DDL for the accounting portal.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ENUM, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.database import Base
from app.models.enums import (
    Company,
    DocumentType,
    ProcessingStatus,
    StorageType,
    TaskStatus,
    TaskType,
)


def _pg_enum(enum_cls, name: str) -> ENUM:
    return ENUM(*[member.value for member in enum_cls], name=name)


company_enum = _pg_enum(Company, "company_enum")


# ────────────────────────────────────────────────────────────
# ACCOUNTING DOCUMENTS
# ────────────────────────────────────────────────────────────
class AccountingDocument(Base):
    __tablename__ = "accounting_documents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
        server_default=text("gen_random_uuid()")
    )
    company: Mapped[str] = mapped_column(company_enum, nullable=False)
    month: Mapped[str] = mapped_column(Text, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    document_type: Mapped[str] = mapped_column(
        _pg_enum(DocumentType, "document_type_enum"),
        nullable=False, default=DocumentType.BANK_STATEMENT.value,
        server_default=DocumentType.BANK_STATEMENT.value,
    )
    storage_type: Mapped[str] = mapped_column(
        _pg_enum(StorageType, "storage_type_enum"),
        nullable=False, default=StorageType.PRIMARY.value,
        server_default=StorageType.PRIMARY.value,
    )
    primary_handle: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    secondary_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    secondary_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_filename: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    external_task_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_status: Mapped[str] = mapped_column(
        _pg_enum(ProcessingStatus, "processing_status_enum"),
        nullable=False, default=ProcessingStatus.UPLOADED.value,
        server_default=ProcessingStatus.UPLOADED.value,
    )
    analysis_result: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    uploaded_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()"),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_accounting_documents_company_period", "company", "year", "month"),
        Index("idx_accounting_documents_status", "processing_status"),
        Index("idx_accounting_documents_task", "external_task_id"),
        Index("idx_accounting_documents_uploaded_by", "uploaded_by", "created_at"),
    )


# ────────────────────────────────────────────────────────────
# EXTERNAL TASKS
# ────────────────────────────────────────────────────────────
class ExternalTask(Base):
    __tablename__ = "external_tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
        server_default=text("gen_random_uuid()")
    )
    remote_task_id: Mapped[str] = mapped_column(Text, nullable=False)
    task_type: Mapped[str] = mapped_column(
        _pg_enum(TaskType, "task_type_enum"),
        nullable=False, default=TaskType.ACCOUNTING.value,
        server_default=TaskType.ACCOUNTING.value,
    )
    company: Mapped[str] = mapped_column(company_enum, nullable=False)
    status: Mapped[str] = mapped_column(
        _pg_enum(TaskStatus, "task_status_enum"),
        nullable=False, default=TaskStatus.PENDING.value,
        server_default=TaskStatus.PENDING.value,
    )
    accounting_document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    input_data: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    result_data: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()"),
        onupdate=func.now(),
    )

    __table_args__ = (
        # One live task per company; failed tasks drop out of the index
        Index(
            "uq_external_tasks_active_company",
            "task_type", "company",
            unique=True,
            postgresql_where=text("status <> 'failed'"),
        ),
        Index("idx_external_tasks_remote", "remote_task_id"),
    )
