"""
Tests for the ordered file retrieval chain.
"""

import asyncio

import httpx
import pytest

from app.pipeline.retrieval import RetrievalExhaustedError, build_default_chain

PUBLIC_URL = "https://proj.supabase.co/storage/v1/object/public/cadgroup-uploads/a/b.pdf"


class TestDefaultChain:

    def test_order(self, primary_store, unconfigured_secondary):
        chain = build_default_chain(primary_store, unconfigured_secondary)
        assert chain.source_names == ["primary", "secondary_url", "secondary_api"]

    def test_primary_wins_without_network(self, repository, primary_store, make_secondary):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=b"remote")

        blob = primary_store.put(b"%PDF-local", "s.pdf", "application/pdf")
        doc = repository.add_document(primary_handle=blob.handle, secondary_url=PUBLIC_URL,
                                      secondary_path="a/b.pdf")
        chain = build_default_chain(primary_store, make_secondary(handler))

        result = asyncio.run(chain.retrieve(doc))

        assert result.content == b"%PDF-local"
        assert result.content_type == "application/pdf"
        assert result.source == "primary"
        assert calls == []
        assert [a.source for a in result.attempts] == ["primary"]

    def test_falls_through_to_public_url(self, repository, primary_store, make_secondary):
        def handler(request):
            assert str(request.url) == PUBLIC_URL
            assert "authorization" not in request.headers
            return httpx.Response(200, content=b"%PDF-cdn",
                                  headers={"content-type": "application/pdf"})

        doc = repository.add_document(primary_handle="0" * 32, secondary_url=PUBLIC_URL)
        chain = build_default_chain(primary_store, make_secondary(handler))

        result = asyncio.run(chain.retrieve(doc))

        assert result.source == "secondary_url"
        assert result.content == b"%PDF-cdn"
        assert [(a.source, a.succeeded) for a in result.attempts] == [
            ("primary", False), ("secondary_url", True),
        ]

    def test_legacy_file_url_used_as_public_url(self, repository, primary_store, make_secondary):
        def handler(request):
            return httpx.Response(200, content=b"legacy")

        doc = repository.add_document(file_url=PUBLIC_URL)
        chain = build_default_chain(primary_store, make_secondary(handler))

        assert asyncio.run(chain.retrieve(doc)).source == "secondary_url"

    def test_relative_file_url_is_not_fetched(self, repository, primary_store, make_secondary):
        def handler(request):
            raise AssertionError("no request expected")

        doc = repository.add_document(file_url="/api/files/primary/" + "a" * 32)
        chain = build_default_chain(primary_store, make_secondary(handler))

        with pytest.raises(RetrievalExhaustedError):
            asyncio.run(chain.retrieve(doc))

    def test_falls_through_to_storage_api(self, repository, primary_store, make_secondary):
        def handler(request):
            if "/object/public/" in request.url.path:
                return httpx.Response(404)
            assert "/object/authenticated/cadgroup-uploads/a/b.pdf" in request.url.path
            assert request.headers["authorization"] == "Bearer service-key"
            return httpx.Response(200, content=b"%PDF-api")

        doc = repository.add_document(secondary_url=PUBLIC_URL, secondary_path="a/b.pdf")
        chain = build_default_chain(primary_store, make_secondary(handler))

        result = asyncio.run(chain.retrieve(doc))

        assert result.source == "secondary_api"
        assert result.content == b"%PDF-api"

    def test_all_sources_fail(self, repository, primary_store, make_secondary):
        def handler(request):
            if "/object/public/" in request.url.path:
                return httpx.Response(404)
            return httpx.Response(400, json={"message": "Object not found"})

        doc = repository.add_document(primary_handle="not-a-handle", secondary_url=PUBLIC_URL,
                                      secondary_path="a/b.pdf")
        chain = build_default_chain(primary_store, make_secondary(handler))

        with pytest.raises(RetrievalExhaustedError) as exc_info:
            asyncio.run(chain.retrieve(doc))

        message = str(exc_info.value)
        assert str(doc.id) in message
        for expected in ("primary", "not-a-handle", "secondary_url", PUBLIC_URL,
                         "HTTP 404", "secondary_api", "a/b.pdf"):
            assert expected in message
        assert [a.succeeded for a in exc_info.value.attempts] == [False, False, False]

    def test_record_without_identifiers(self, repository, primary_store, unconfigured_secondary):
        doc = repository.add_document()
        chain = build_default_chain(primary_store, unconfigured_secondary)

        with pytest.raises(RetrievalExhaustedError) as exc_info:
            asyncio.run(chain.retrieve(doc))

        assert all(a.identifier is None for a in exc_info.value.attempts)
        assert "no identifier on record" in str(exc_info.value)

    def test_malformed_public_url_falls_through(self, repository, primary_store, make_secondary):
        def handler(request):
            return httpx.Response(200, content=b"%PDF-api")

        doc = repository.add_document(secondary_url="http://[::1/a/b.pdf", secondary_path="a/b.pdf")
        chain = build_default_chain(primary_store, make_secondary(handler))

        result = asyncio.run(chain.retrieve(doc))

        assert result.source == "secondary_api"
        assert [(a.source, a.succeeded) for a in result.attempts] == [
            ("primary", False), ("secondary_url", False), ("secondary_api", True),
        ]

    def test_network_error_is_recorded(self, repository, primary_store, make_secondary):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        doc = repository.add_document(secondary_url=PUBLIC_URL)
        chain = build_default_chain(primary_store, make_secondary(handler))

        with pytest.raises(RetrievalExhaustedError) as exc_info:
            asyncio.run(chain.retrieve(doc))

        url_attempt = exc_info.value.attempts[1]
        assert url_attempt.source == "secondary_url"
        assert "Public URL fetch failed" in url_attempt.detail
