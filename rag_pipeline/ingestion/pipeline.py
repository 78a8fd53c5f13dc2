"""Document ingestion: chunk, embed, and persist searchable chunks.

IngestionPipeline.ingest runs one ingestion attempt:
1. Validate input and the collection's chunking parameters (no I/O on failure).
2. Create the Document row with status "processing" and commit it.
3. Chunk the content with the collection's chunk size/overlap.
4. Embed all chunks as one batch through the fallback orchestrator.
5. In a single transaction, insert one Chunk row per vector (vector i belongs to
   chunk i) and flip the document to "completed".

Any failure after step 2 marks the document "failed" with the captured reason and
leaves no chunk rows behind; the error is re-raised to the caller. An interrupted
attempt (KeyboardInterrupt, SystemExit, ...) is resolved to "failed" as a cancellation.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from rag_pipeline.db import session_scope
from rag_pipeline.errors import NotFound, ProviderError, StorageFailure, ValidationError
from rag_pipeline.fallback import FallbackOrchestrator, describe_failure
from rag_pipeline.models import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    Chunk,
    Collection,
    Document,
)
from rag_pipeline.providers import EmbeddingResponse
from rag_pipeline.schemas import IngestResult
from rag_pipeline.utils import chunk_text, content_hash, validate_chunking

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Document"


def chunk_metadata(
    document: Document, index: int, embedded: EmbeddingResponse, extra: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Citation metadata for one chunk. Derived keys win over caller-supplied ones."""
    meta: Dict[str, Any] = dict(extra or {})
    meta.update(
        {
            "document_id": document.id,
            "title": document.title,
            "source": document.source,
            "content_type": document.content_type,
            "chunk_index": index,
            "provider": embedded.provider,
            "model": embedded.model,
        }
    )
    return meta


class IngestionPipeline:
    def __init__(self, session_factory: sessionmaker, orchestrator: FallbackOrchestrator):
        self._session_factory = session_factory
        self._orchestrator = orchestrator

    def ingest(
        self,
        collection_id: int,
        title: Optional[str],
        content: str,
        source: Optional[str] = None,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        """Ingest one document into a collection.

        Returns:
            IngestResult: document id plus chunk and embedding counts (always equal).

        Raises:
            ValidationError: bad input or collection parameters; nothing is written.
            NotFound: unknown collection; nothing is written.
            ProviderChainExhausted / ProviderError / StorageFailure: the document is
                left "failed" with the reason recorded.
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("content is required")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")

        with session_scope(self._session_factory) as db:
            collection = db.get(Collection, collection_id)
            if collection is None:
                raise NotFound("collection", collection_id)
            chunk_size, overlap = collection.chunk_size, collection.chunk_overlap
            validate_chunking(chunk_size, overlap)

            document = Document(
                collection_id=collection_id,
                title=(title or DEFAULT_TITLE)[:500],
                content=content,
                source=source,
                content_type=content_type,
                content_hash=content_hash(content),
                meta=metadata or {},
                processing_status=STATUS_PROCESSING,
            )
            db.add(document)
            db.flush()
            document_id = document.id

        logger.info("Ingesting document %s into collection %s", document_id, collection_id)
        try:
            chunks = chunk_text(content, chunk_size, overlap)
            logger.debug("Document %s => %d chunks", document_id, len(chunks))
            embedded = self._orchestrator.embed(chunks)
            if len(embedded.vectors) != len(chunks):
                raise ProviderError(
                    embedded.provider,
                    f"protocol violation: {len(embedded.vectors)} vectors for {len(chunks)} chunks",
                )
            self._commit_chunks(document_id, chunks, embedded, metadata)
        except Exception as exc:
            reason = describe_failure(exc)
            logger.warning("Ingestion of document %s failed: %s", document_id, reason)
            self._mark_failed(document_id, reason)
            raise
        except BaseException:
            self._mark_failed(document_id, "cancelled: ingestion aborted before completion")
            raise

        logger.info(
            "Document %s completed: chunks=%d provider=%s model=%s dim=%d",
            document_id, len(chunks), embedded.provider, embedded.model, embedded.dimension,
        )
        return IngestResult(
            document_id=document_id,
            chunk_count=len(chunks),
            embedding_count=len(embedded.vectors),
            provider=embedded.provider,
            model=embedded.model,
        )

    def _commit_chunks(
        self,
        document_id: int,
        chunks: List[str],
        embedded: EmbeddingResponse,
        metadata: Optional[Dict[str, Any]],
    ) -> None:
        """Insert every chunk and complete the document in one transaction."""
        with session_scope(self._session_factory) as db:
            document = db.get(Document, document_id)
            if document is None:
                raise NotFound("document", document_id)
            for i, (text, vector) in enumerate(zip(chunks, embedded.vectors)):
                db.add(
                    Chunk(
                        document_id=document_id,
                        chunk_index=i,
                        content=text,
                        embedding=vector,
                        embedding_dim=len(vector),
                        embedding_provider=embedded.provider,
                        embedding_model=embedded.model,
                        meta=chunk_metadata(document, i, embedded, metadata),
                    )
                )
            document.processing_status = STATUS_COMPLETED
            document.error_message = None

    def _mark_failed(self, document_id: int, reason: str) -> None:
        try:
            with session_scope(self._session_factory) as db:
                document = db.get(Document, document_id)
                if document is None:
                    return
                document.processing_status = STATUS_FAILED
                document.error_message = reason[:2000]
        except StorageFailure:
            logger.exception("Could not record failure for document %s", document_id)
