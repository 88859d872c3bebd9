"""
Tests for the Claude extraction engine against a fake Messages client.
"""

import asyncio
import base64
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from app.engines.base import (
    ERR_AI_API,
    ERR_AI_AUTH,
    ERR_AI_BAD_REQUEST,
    ERR_AI_NETWORK,
    ERR_AI_NOT_CONFIGURED,
    ERR_AI_RATE_LIMIT,
    ERR_AI_RESPONSE,
    EngineError,
)
from app.engines.claude_engine import ClaudeEngine, build_content_block

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(cls, status):
    return cls("rejected", response=httpx.Response(status, request=REQUEST), body=None)


class FakeMessages:

    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=self.content)


def _engine(messages):
    return ClaudeEngine(api_key="", model="claude-test", max_tokens=512,
                        client=SimpleNamespace(messages=messages))


def _extract(engine, filename="statement.pdf", content_type="application/pdf"):
    return asyncio.run(engine.extract_document(
        content=b"%PDF-1.4", filename=filename, content_type=content_type,
        document_type="bank_statement", company="dpm", month="March", year=2025,
    ))


class TestContentBlock:

    def test_pdf_is_document_block(self):
        block = build_content_block(b"%PDF", "s.PDF", "application/octet-stream")
        assert block["type"] == "document"
        assert block["source"]["media_type"] == "application/pdf"
        assert base64.b64decode(block["source"]["data"]) == b"%PDF"

    @pytest.mark.parametrize("filename,content_type,expected", [
        ("scan.jpg", "image/jpeg", "image/jpeg"),
        ("scan.JPEG", "", "image/jpeg"),
        ("photo", "image/webp", "image/webp"),
        ("photo", "application/octet-stream", "image/png"),
    ])
    def test_images(self, filename, content_type, expected):
        block = build_content_block(b"img", filename, content_type)
        assert block["type"] == "image"
        assert block["source"]["media_type"] == expected


class TestExtraction:

    def test_returns_text(self):
        messages = FakeMessages(content=[SimpleNamespace(type="text", text='{"ok": true}')])

        assert _extract(_engine(messages)) == '{"ok": true}'

        call = messages.calls[0]
        assert call["model"] == "claude-test"
        assert call["max_tokens"] == 512
        prompt, attachment = call["messages"][0]["content"]
        assert "dpm" in prompt["text"] and "March 2025" in prompt["text"]
        assert attachment["type"] == "document"

    def test_non_text_response(self):
        messages = FakeMessages(content=[SimpleNamespace(type="tool_use")])
        with pytest.raises(EngineError) as exc_info:
            _extract(_engine(messages))
        assert exc_info.value.error_code == ERR_AI_RESPONSE

    def test_empty_response(self):
        with pytest.raises(EngineError) as exc_info:
            _extract(_engine(FakeMessages(content=[])))
        assert exc_info.value.error_code == ERR_AI_RESPONSE

    @pytest.mark.parametrize("error,code", [
        (_status_error(anthropic.AuthenticationError, 401), ERR_AI_AUTH),
        (_status_error(anthropic.RateLimitError, 429), ERR_AI_RATE_LIMIT),
        (_status_error(anthropic.BadRequestError, 400), ERR_AI_BAD_REQUEST),
        (_status_error(anthropic.InternalServerError, 500), ERR_AI_API),
        (anthropic.APIConnectionError(request=REQUEST), ERR_AI_NETWORK),
    ])
    def test_error_mapping(self, error, code):
        with pytest.raises(EngineError) as exc_info:
            _extract(_engine(FakeMessages(error=error)))
        assert exc_info.value.error_code == code
        assert exc_info.value.message.startswith("Claude API error")

    def test_missing_key(self):
        engine = ClaudeEngine(api_key="")
        assert not engine.is_configured
        with pytest.raises(EngineError) as exc_info:
            _extract(engine)
        assert exc_info.value.error_code == ERR_AI_NOT_CONFIGURED


class TestHealthCheck:

    def test_healthy(self):
        messages = FakeMessages(content=[SimpleNamespace(type="text", text="OK")])
        assert asyncio.run(_engine(messages).health_check()) is True

    def test_failure_reports_unhealthy(self):
        messages = FakeMessages(error=_status_error(anthropic.AuthenticationError, 401))
        assert asyncio.run(_engine(messages).health_check()) is False
