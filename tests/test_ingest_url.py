"""
Tests for the web page ingestor with the HTTP fetch mocked out.
"""

from unittest.mock import MagicMock

import pytest

from rag_pipeline.errors import ValidationError
from rag_pipeline.ingestion import ingest_url as ingest_url_mod
from rag_pipeline.ingestion.ingest_url import ingest_url, page_to_document

PAGE = """<!doctype html>
<html><head><title>Vector Guide</title></head>
<body><h1>Postgres vector search</h1><p>Store embeddings with pgvector.</p></body></html>"""


def _fake_get(body, content_type):
    resp = MagicMock()
    resp.status_code = 200
    resp.text = body
    resp.content = body.encode("utf-8")
    resp.headers = {"Content-Type": content_type}
    resp.raise_for_status.return_value = None
    return MagicMock(return_value=resp)


class TestPageToDocument:
    def test_html_uses_page_title_and_text(self):
        title, text = page_to_document(PAGE, "text/html; charset=utf-8", "https://example.com/guide")

        assert title == "Vector Guide"
        assert text == "Postgres vector search\nStore embeddings with pgvector."

    def test_plain_text_falls_back_to_url_title(self):
        title, text = page_to_document("  plain body  ", "text/plain", "https://example.com/raw.txt")

        assert title == "https://example.com/raw.txt"
        assert text == "plain body"

    def test_explicit_title_wins(self):
        title, _ = page_to_document(PAGE, "text/html", "https://example.com/guide", title="Custom")
        assert title == "Custom"


class TestIngestUrl:
    def test_fetched_page_ingested_with_source_and_content_type(self, service, collection, monkeypatch):
        get = _fake_get(PAGE, "text/html; charset=utf-8")
        monkeypatch.setattr(ingest_url_mod.requests, "get", get)

        result = ingest_url(service, collection.id, "https://example.com/guide")

        doc = service.get_document(result.document_id)
        assert doc.title == "Vector Guide"
        assert doc.source == "https://example.com/guide"
        assert doc.content_type == "text/html"
        assert doc.metadata == {"url": "https://example.com/guide"}
        assert result.chunk_count >= 1
        assert get.call_args.kwargs["headers"]["User-Agent"].startswith("RAG-Ingestor")

    def test_page_without_text_rejected(self, service, collection, monkeypatch, provider):
        monkeypatch.setattr(ingest_url_mod.requests, "get", _fake_get("<html><body></body></html>", "text/html"))

        with pytest.raises(ValidationError):
            ingest_url(service, collection.id, "https://example.com/empty")
        assert provider.embed_calls == []
