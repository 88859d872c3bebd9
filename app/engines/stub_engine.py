"""
Stub extraction engine for testing pipeline plumbing.
Returns a fixed response (or raises a fixed error) without calling any API.
"""

import json
from typing import Optional

from app.engines.base import EngineError, ExtractionEngine


DEFAULT_RESPONSE = json.dumps({
    "documentType": "bank_statement",
    "transactions": [],
    "summary": {"totalDebits": 0, "totalCredits": 0, "transactionCount": 0},
    "plStatement": {"totalRevenue": 0, "totalExpenses": 0, "netIncome": 0, "categories": {}},
    "insights": ["Stub engine: no analysis performed"],
})


class StubEngine(ExtractionEngine):
    """Fake adapter that returns a canned model response."""

    def __init__(self, response: str = DEFAULT_RESPONSE, error: Optional[EngineError] = None,
                 configured: bool = True):
        self.response = response
        self.error = error
        self.configured = configured
        self.calls: list[dict] = []

    @property
    def engine_name(self) -> str:
        return "stub"

    @property
    def engine_version(self) -> str:
        return "0.1.0"

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def extract_document(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        document_type: str,
        company: str,
        month: str,
        year: int,
    ) -> str:
        """Record the call and return the canned response."""
        self.calls.append({
            "content": content,
            "filename": filename,
            "content_type": content_type,
            "document_type": document_type,
            "company": company,
            "month": month,
            "year": year,
        })
        if self.error is not None:
            raise self.error
        return self.response

    async def health_check(self) -> bool:
        """Stub is always healthy."""
        return True
