"""Web page ingestor.

Fetches a page over HTTP, converts HTML to plain text with BeautifulSoup, and ingests
it into a collection as one document through the ingestion pipeline (chunk, embed via
the provider fallback chain, persist).

- source is the fetched URL; content_type is the response Content-Type
- title defaults to the page <title>, then to the URL
- non-HTML text responses are ingested as-is

Usage:
  python -m rag_pipeline.ingestion.ingest_url --collection 1 --url https://example.com/docs/page

Configuration:
- Database and providers: rag_pipeline.config.Settings (environment / .env)
"""
from __future__ import annotations

import argparse
import logging
from typing import Optional, Tuple

import requests

from rag_pipeline.config import get_settings
from rag_pipeline.errors import ValidationError
from rag_pipeline.schemas import IngestResult
from rag_pipeline.service import RagService
from rag_pipeline.utils import html_to_text, page_title

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "RAG-Ingestor/1.0 (+https://example.com; contact=dev@example.com)",
    "Accept": "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.5",
}


def fetch_page(url: str, timeout: int = 30) -> Tuple[str, str]:
    """Fetch a URL and return (body text, content type)."""
    logger.info("Fetching page: %s", url)
    resp = requests.get(url, headers=HEADERS, timeout=timeout)
    ctype = resp.headers.get("Content-Type", "")
    logger.info("HTTP %d from %s (content-type=%s, bytes=%d)", resp.status_code, url, ctype, len(resp.content or b""))
    resp.raise_for_status()
    return resp.text, ctype


def page_to_document(body: str, content_type: str, url: str, title: Optional[str] = None) -> Tuple[str, str]:
    """Return (title, text) for a fetched page body."""
    if "html" in content_type.lower() or body.lstrip().lower().startswith(("<!doctype html", "<html")):
        text = html_to_text(body)
        title = title or page_title(body)
    else:
        text = body.strip()
    return (title or url), text


def ingest_url(service: RagService, collection_id: int, url: str, title: Optional[str] = None) -> IngestResult:
    body, ctype = fetch_page(url)
    doc_title, text = page_to_document(body, ctype, url, title=title)
    if not text.strip():
        raise ValidationError(f"no text extracted from {url}")
    return service.ingest_document(
        collection_id,
        doc_title,
        text,
        source=url,
        content_type=ctype.split(";")[0].strip() or None,
        metadata={"url": url},
    )


def main():
    parser = argparse.ArgumentParser(description="Ingest a web page into a collection.")
    parser.add_argument("--collection", type=int, required=True, help="Target collection id")
    parser.add_argument("--url", required=True, help="Page URL to ingest")
    parser.add_argument("--title", default=None, help="Document title (default: page <title>)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logger.info("Starting page ingestion for %s into collection %s", args.url, args.collection)

    service = RagService.from_settings(get_settings())
    try:
        result = ingest_url(service, args.collection, args.url, title=args.title)
        logger.info("Completed ingestion: document=%s chunks=%d", result.document_id, result.chunk_count)
        print(f"[INGEST-URL] {args.url} -> document {result.document_id} ({result.chunk_count} chunks)")
    except Exception:
        logger.exception("Ingestion failed for %s", args.url)
        raise
    finally:
        service.close()


if __name__ == "__main__":
    main()
