"""
Pydantic schemas for the persisted AI analysis result.
Serialised with camelCase keys, the shape dashboards read from
analysis_result.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalysisTransaction(CamelModel):
    date: Optional[str] = None
    description: str = ""
    amount: float
    type: str  # debit | credit
    category: Optional[str] = None


class AnalysisSummary(CamelModel):
    total_debits: float = 0.0
    total_credits: float = 0.0
    transaction_count: int = 0


class PLStatement(CamelModel):
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    net_income: float = 0.0
    categories: dict[str, float] = {}


class AnalysisResult(CamelModel):
    document_type: str
    transactions: list[AnalysisTransaction] = []
    summary: AnalysisSummary
    pl_statement: PLStatement
    insights: list[str] = []
    extracted_at: datetime
    pl_source: str  # transactions | model | degraded
    confidence: str = "normal"  # normal | low
    parse_error: Optional[str] = None
    raw_response: Optional[str] = None

    def to_record(self) -> dict:
        """JSON-ready dict for the analysis_result column."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
