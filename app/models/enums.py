"""
Python enums matching the PostgreSQL enum types.
Names and values MUST match the DB DDL exactly.
"""

from enum import Enum


class Company(str, Enum):
    MURPHY_WEB_SERVICES = "murphy_web_services"
    ESYSTEMS_MANAGEMENT = "esystems_management"
    MM_SECRETARIAL = "mm_secretarial"
    DPM = "dpm"
    LINKAGE_WEB_SOLUTIONS = "linkage_web_solutions"
    WDDS = "wdds"
    MM_LEASING = "mm_leasing"
    HARDIN_BAR_GRILL = "hardin_bar_grill"
    MPHI = "mphi"


COMPANY_NAMES = {
    Company.MURPHY_WEB_SERVICES: "Murphy Web Services Incorporated",
    Company.ESYSTEMS_MANAGEMENT: "E-Systems Management Incorporated",
    Company.MM_SECRETARIAL: "M&M Secretarial Services Incorporated",
    Company.DPM: "DPM Incorporated",
    Company.LINKAGE_WEB_SOLUTIONS: "Linkage Web Solutions Enterprise Incorporated",
    Company.WDDS: "WDDS",
    Company.MM_LEASING: "M&M Leasing Services",
    Company.HARDIN_BAR_GRILL: "Hardin Bar & Grill",
    Company.MPHI: "MPHI",
}


class DocumentType(str, Enum):
    BANK_STATEMENT = "bank_statement"
    INVOICE = "invoice"
    RECEIPT = "receipt"
    OTHER = "other"


class StorageType(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class ProcessingStatus(str, Enum):
    UPLOADED = "uploaded"
    STORED = "stored"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Statuses picked up by reprocessing batches
REPROCESSABLE_STATUSES = (
    ProcessingStatus.STORED,
    ProcessingStatus.UPLOADED,
    ProcessingStatus.FAILED,
)


class TaskType(str, Enum):
    ACCOUNTING = "accounting"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TxType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class PLSource(str, Enum):
    """Where the persisted P&L totals came from."""
    TRANSACTIONS = "transactions"
    MODEL = "model"
    DEGRADED = "degraded"


MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def month_index(month: str) -> int:
    """Calendar position of a month name (case-insensitive), -1 if unknown."""
    lowered = month.strip().lower()
    for i, name in enumerate(MONTHS):
        if name.lower() == lowered:
            return i
    return -1
