"""
Client for the external task service (Manus).
Each company keeps one long-lived accounting task; uploaded files are
attached to it and results arrive later through webhooks or polling.
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog

from app.config import settings
from app.models.enums import COMPANY_NAMES, Company, TaskStatus

logger = structlog.get_logger(__name__)

REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL, ValueError)


ACCOUNTING_INSTRUCTIONS = """You are the accounting assistant for {company_name}.

Your responsibilities:
1. OCR and extract data from uploaded financial documents (PDFs, images)
2. Parse bank statements, invoices, receipts
3. Extract transactions with dates, descriptions, amounts
4. Categorize expenses and income
5. Generate monthly P&L statements automatically
6. Maintain running financial analysis
7. Track cash flow and balances

For each uploaded document:
- Perform OCR extraction
- Identify document type (bank statement, invoice, receipt, etc.)
- Parse all transactions
- Update financial records
- Generate insights

Generate monthly P&L statements including:
- Total Revenue by category
- Total Expenses by category
- Net Income
- Month-over-month comparison
- Year-over-year comparison
- Key financial metrics

Maintain a comprehensive financial history and provide analysis when requested."""


class TaskServiceError(Exception):
    """Raised when the task service rejects or fails a request."""

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None):
        self.operation = operation
        self.message = message
        self.status_code = status_code
        super().__init__(f"Failed to {operation}: {message}")


@dataclass
class RemoteTask:
    id: str
    status: str
    result: Optional[dict] = None
    error: Optional[str] = None


class ManusClient:
    """HTTP client for task creation, file attachment and status polling."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.MANUS_API_KEY or ""
        self.base_url = (base_url or settings.MANUS_BASE_URL).rstrip("/")
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.MANUS_WEBHOOK_SECRET or ""
        )
        self.timeout = timeout_seconds or settings.MANUS_TIMEOUT_SECONDS
        self._transport = transport

        if self.api_key and len(self.api_key.split(".")) != 3 and not self.api_key.startswith("sk-"):
            logger.warning("manus_api_key_format_unexpected")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
        )

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> dict:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
        except REQUEST_ERRORS as e:
            raise TaskServiceError(operation, str(e)) from e

        if resp.status_code >= 400:
            try:
                body = resp.json()
                detail = resp.text
                if isinstance(body, dict):
                    detail = body.get("message") or body.get("error") or resp.text
            except ValueError:
                detail = resp.text
            logger.error("manus_request_failed", operation=operation,
                         status_code=resp.status_code, detail=str(detail)[:200])
            raise TaskServiceError(operation, str(detail)[:200], status_code=resp.status_code)

        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def create_task(self, kind: str, instructions: str,
                          metadata: Optional[dict] = None) -> RemoteTask:
        data = await self._request(
            "create task", "POST", "/tasks",
            json={
                "instructions": instructions,
                "metadata": {
                    **(metadata or {}),
                    "type": kind,
                    "createdAt": datetime.now(timezone.utc).isoformat(),
                },
            },
        )
        task_id = data.get("id") or data.get("task_id")
        if not task_id:
            raise TaskServiceError("create task", "response did not include a task id")
        return RemoteTask(str(task_id), data.get("status") or TaskStatus.PENDING.value,
                          result=data.get("result"))

    async def create_accounting_task(self, company: str) -> RemoteTask:
        """Create the persistent accounting task for a company."""
        try:
            company_name = COMPANY_NAMES[Company(company)]
        except ValueError:
            company_name = company
        task = await self.create_task(
            "accounting",
            ACCOUNTING_INSTRUCTIONS.format(company_name=company_name),
            metadata={
                "company": company,
                "companyName": company_name,
                "persistent": True,
                "taskType": "accounting",
            },
        )
        logger.info("manus_task_created", company=company, task_id=task.id)
        return task

    async def upload_file_to_task(self, task_id: str, data: bytes, filename: str,
                                  content_type: str) -> Optional[str]:
        """Attach a file to a task. Returns the remote file id if one is reported."""
        body = await self._request(
            "upload file", "POST", f"/tasks/{task_id}/files",
            files={"file": (filename, data, content_type)},
        )
        logger.info("manus_file_uploaded", task_id=task_id, filename=filename,
                    size_bytes=len(data))
        return body.get("file_id") or body.get("id")

    async def get_task_status(self, task_id: str) -> RemoteTask:
        data = await self._request("get task status", "GET", f"/tasks/{task_id}")
        return RemoteTask(
            str(data.get("id") or task_id),
            data.get("status") or TaskStatus.PENDING.value,
            result=data.get("result"),
            error=data.get("error"),
        )

    async def register_webhook(self, url: str,
                               events: Optional[list[str]] = None) -> dict:
        return await self._request(
            "register webhook", "POST", "/webhooks",
            json={"url": url, "events": events or ["task.completed", "task.failed"]},
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """HMAC-SHA256 hex digest of the raw body, compared in constant time."""
        if not self.webhook_secret:
            logger.warning("manus_webhook_secret_missing")
            return False
        expected = hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")


async def ensure_webhook(client: ManusClient, url: Optional[str]) -> bool:
    """Register the task status callback. Failure is logged; startup continues."""
    if not url or not client.is_configured:
        return False
    try:
        await client.register_webhook(url)
    except TaskServiceError as e:
        logger.warning("manus_webhook_registration_failed", url=url, error=e.message)
        return False
    logger.info("manus_webhook_registered", url=url)
    return True
