"""
Anthropic Claude extraction engine.
Sends the document inline as base64 (PDF document block or image block)
with a structured prompt asking for a JSON P&L analysis.
"""

import base64
import time
from typing import Optional

import anthropic
import structlog

from app.config import settings
from app.engines.base import (
    ERR_AI_API,
    ERR_AI_AUTH,
    ERR_AI_BAD_REQUEST,
    ERR_AI_NETWORK,
    ERR_AI_NOT_CONFIGURED,
    ERR_AI_RATE_LIMIT,
    ERR_AI_RESPONSE,
    EngineError,
    ExtractionEngine,
)
from app.observability.metrics import ai_request_duration_seconds, ai_requests_total

logger = structlog.get_logger(__name__)


SYSTEM_PROMPT = """You are an expert financial document analyzer. Your task is to extract and analyze financial data from uploaded documents.

For bank statements, extract:
1. All transactions with dates, descriptions, and amounts
2. Identify debits (expenses) and credits (income)
3. Categorize transactions into standard accounting categories
4. Calculate totals and generate a P&L summary

Return your analysis as a JSON object with this exact structure:
{
  "documentType": "bank_statement" | "invoice" | "receipt" | "other",
  "transactions": [
    {
      "date": "YYYY-MM-DD",
      "description": "string",
      "amount": number,
      "type": "debit" | "credit",
      "category": "string"
    }
  ],
  "summary": {
    "totalDebits": number,
    "totalCredits": number,
    "transactionCount": number
  },
  "plStatement": {
    "totalRevenue": number,
    "totalExpenses": number,
    "netIncome": number,
    "categories": {
      "category_name": amount
    }
  },
  "insights": ["string array of key observations"]
}

Be thorough and extract ALL transactions. Use these standard categories:
- Revenue: Sales, Services, Interest Income, Other Income
- Expenses: Payroll, Rent, Utilities, Supplies, Marketing, Insurance, Professional Services, Bank Fees, Other Expenses"""


USER_PROMPT = """Please analyze this {document_type} for {company} for {month} {year}.

Extract all financial data and provide a complete analysis. The document is attached as a base64-encoded file.

Document filename: {filename}
Document type: {document_type}
Company: {company}
Period: {month} {year}

Please return ONLY the JSON object with the analysis results."""


IMAGE_MEDIA_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
}


def build_content_block(content: bytes, filename: str, content_type: str) -> dict:
    """PDFs go in a document block, everything else as an image."""
    data = base64.standard_b64encode(content).decode("utf-8")
    lowered = (filename or "").lower()
    if lowered.endswith(".pdf") or content_type == "application/pdf":
        return {
            "type": "document",
            "source": {"type": "base64", "media_type": "application/pdf", "data": data},
        }
    ext = lowered.rsplit(".", 1)[-1] if "." in lowered else ""
    media_type = IMAGE_MEDIA_TYPES.get(ext)
    if media_type is None:
        media_type = content_type if content_type in IMAGE_MEDIA_TYPES.values() else "image/png"
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": media_type, "data": data},
    }


class ClaudeEngine(ExtractionEngine):
    """Extraction through the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.ANTHROPIC_API_KEY or ""
        self.model = model or settings.ANTHROPIC_MODEL
        self.max_tokens = max_tokens or settings.ANTHROPIC_MAX_TOKENS
        self._client = client
        if not self.api_key and client is None:
            logger.warning("anthropic_api_key_missing")

    @property
    def engine_name(self) -> str:
        return "claude"

    @property
    def engine_version(self) -> str:
        return self.model

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self.api_key:
                raise EngineError(self.engine_name, ERR_AI_NOT_CONFIGURED,
                                  "Document processing service not configured - ANTHROPIC_API_KEY missing")
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

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
        client = self._get_client()
        prompt = USER_PROMPT.format(
            document_type=document_type, company=company, month=month,
            year=year, filename=filename,
        )
        logger.info("claude_request_started", filename=filename, size_bytes=len(content),
                    document_type=document_type, company=company, period=f"{month} {year}")

        started = time.time()
        try:
            message = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        build_content_block(content, filename, content_type),
                    ],
                }],
            )
        except anthropic.AuthenticationError as e:
            raise self._fail(ERR_AI_AUTH, "authentication failed, check ANTHROPIC_API_KEY", e)
        except anthropic.RateLimitError as e:
            raise self._fail(ERR_AI_RATE_LIMIT, "rate limit exceeded", e)
        except anthropic.BadRequestError as e:
            raise self._fail(ERR_AI_BAD_REQUEST, "request rejected as malformed", e)
        except (anthropic.APIConnectionError, anthropic.APITimeoutError) as e:
            raise self._fail(ERR_AI_NETWORK, "could not reach the API", e)
        except anthropic.APIError as e:
            raise self._fail(ERR_AI_API, "API call failed", e)
        finally:
            ai_request_duration_seconds.labels(engine_name=self.engine_name).observe(
                time.time() - started
            )

        if not message.content or message.content[0].type != "text":
            ai_requests_total.labels(engine_name=self.engine_name, outcome=ERR_AI_RESPONSE).inc()
            raise EngineError(self.engine_name, ERR_AI_RESPONSE,
                              "Claude API error: Unexpected response type from Claude")

        text = message.content[0].text
        ai_requests_total.labels(engine_name=self.engine_name, outcome="ok").inc()
        logger.info("claude_response_received", filename=filename, response_chars=len(text),
                    duration_ms=int((time.time() - started) * 1000))
        return text

    def _fail(self, error_code: str, summary: str, exc: Exception) -> EngineError:
        ai_requests_total.labels(engine_name=self.engine_name, outcome=error_code).inc()
        logger.error("claude_request_failed", error_code=error_code,
                     status_code=getattr(exc, "status_code", None), error=str(exc))
        return EngineError(self.engine_name, error_code, f"Claude API error: {summary}: {exc}")

    async def health_check(self) -> bool:
        """Tiny round trip to confirm credentials work."""
        try:
            message = await self._get_client().messages.create(
                model=self.model,
                max_tokens=10,
                messages=[{"role": "user", "content": 'Respond with "OK"'}],
            )
        except (anthropic.APIError, EngineError) as e:
            logger.warning("claude_health_check_failed", error=str(e))
            return False
        return bool(message.content)
