"""Caller-facing facade over the RAG core.

RagService wires the components together and exposes the operations hosts call:
- collections: create_collection, list_collections, get_collection, update_collection,
  delete_collection
- documents: ingest_document, list_documents, get_document, delete_document
- sessions: create_session, get_session, deactivate_session, list_sessions, query,
  get_chat_history, list_sources_for_message
- status: provider_status, probe_providers, health_check, get_statistics

Build one with RagService.from_settings(settings) in an entrypoint, or pass the
components explicitly (tests do this with SQLite and fake providers).
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from rag_pipeline.cache import EmbeddingCache
from rag_pipeline.config import Settings
from rag_pipeline.db import init_db, make_engine, make_session_factory, session_scope
from rag_pipeline.errors import NotFound, ValidationError
from rag_pipeline.fallback import FallbackOrchestrator, build_orchestrator
from rag_pipeline.ingestion.pipeline import IngestionPipeline
from rag_pipeline.models import STATUS_COMPLETED, ChatSession, Chunk, Collection, Document
from rag_pipeline.obs import init_tracing
from rag_pipeline.providers import ProbeResult
from rag_pipeline.retrieval import Retriever
from rag_pipeline.schemas import (
    CollectionOut,
    DocumentOut,
    HealthResponse,
    IngestResult,
    MessageOut,
    ProviderStatus,
    QueryResult,
    SessionOut,
    Source,
    Statistics,
)
from rag_pipeline.sessions import RETRIEVAL_COUNT_RANGE, SessionOrchestrator
from rag_pipeline.utils import validate_chunking

logger = logging.getLogger(__name__)

_UNSET = object()


def collection_out(c: Collection) -> CollectionOut:
    return CollectionOut(
        id=c.id,
        name=c.name,
        description=c.description,
        embedding_model=c.embedding_model,
        chunk_size=c.chunk_size,
        chunk_overlap=c.chunk_overlap,
        max_retrieval_count=c.max_retrieval_count,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


def document_out(d: Document, chunk_count: int) -> DocumentOut:
    return DocumentOut(
        id=d.id,
        collection_id=d.collection_id,
        title=d.title,
        source=d.source,
        content_type=d.content_type,
        content_hash=d.content_hash,
        metadata=d.meta or {},
        processing_status=d.processing_status,
        error_message=d.error_message,
        chunk_count=chunk_count,
        created_at=d.created_at,
        updated_at=d.updated_at,
    )


def provider_status_out(r: ProbeResult) -> ProviderStatus:
    return ProviderStatus(provider_name=r.provider_name, available=r.available, error=r.error, models=r.models)


def _check_retrieval_count(value: int) -> None:
    lo, hi = RETRIEVAL_COUNT_RANGE
    if isinstance(value, bool) or not isinstance(value, int) or not lo <= value <= hi:
        raise ValidationError(f"max_retrieval_count must be between {lo} and {hi}")


class RagService:
    def __init__(
        self,
        session_factory: sessionmaker,
        orchestrator: FallbackOrchestrator,
        cache: Optional[EmbeddingCache] = None,
        default_chunk_size: int = 1000,
        default_chunk_overlap: int = 200,
        default_retrieval_count: int = 5,
        **session_defaults: Any,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.default_chunk_size = default_chunk_size
        self.default_chunk_overlap = default_chunk_overlap
        self.default_retrieval_count = default_retrieval_count
        self.ingestion = IngestionPipeline(session_factory, orchestrator)
        self.retriever = Retriever(session_factory, orchestrator, cache=cache)
        self.sessions = SessionOrchestrator(
            session_factory,
            self.retriever,
            orchestrator,
            default_retrieval_count=default_retrieval_count,
            **session_defaults,
        )

    @classmethod
    def from_settings(cls, settings: Settings, create_tables: bool = True) -> "RagService":
        """Build engine, providers, cache and tracing from an explicit Settings object."""
        engine = make_engine(settings.DATABASE_URL)
        if create_tables:
            init_db(engine)
        if init_tracing(settings.LANGFUSE_HOST, settings.LANGFUSE_PUBLIC_KEY, settings.LANGFUSE_SECRET_KEY):
            logger.info("Langfuse tracing enabled")
        return cls(
            make_session_factory(engine),
            build_orchestrator(settings),
            cache=EmbeddingCache.from_url(settings.REDIS_URL, settings.EMBEDDING_CACHE_TTL_SECONDS),
            default_chunk_size=settings.DEFAULT_CHUNK_SIZE,
            default_chunk_overlap=settings.DEFAULT_CHUNK_OVERLAP,
            default_retrieval_count=settings.DEFAULT_RETRIEVAL_COUNT,
            default_context_window=settings.DEFAULT_CONTEXT_WINDOW,
            default_temperature=settings.DEFAULT_TEMPERATURE,
            default_model=settings.DEFAULT_MODEL,
            max_output_tokens=settings.MAX_OUTPUT_TOKENS,
            history_messages=settings.HISTORY_MESSAGES,
        )

    def close(self) -> None:
        self.orchestrator.close()

    # Collections

    def create_collection(
        self,
        name: str,
        description: Optional[str] = None,
        embedding_model: Optional[str] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        max_retrieval_count: Optional[int] = None,
    ) -> CollectionOut:
        name = (name or "").strip()
        if not name:
            raise ValidationError("collection name is required")
        chunk_size = self.default_chunk_size if chunk_size is None else chunk_size
        chunk_overlap = self.default_chunk_overlap if chunk_overlap is None else chunk_overlap
        max_retrieval_count = self.default_retrieval_count if max_retrieval_count is None else max_retrieval_count
        validate_chunking(chunk_size, chunk_overlap)
        _check_retrieval_count(max_retrieval_count)

        with session_scope(self.session_factory) as db:
            if db.execute(select(Collection.id).where(Collection.name == name)).first() is not None:
                raise ValidationError(f"collection {name!r} already exists")
            collection = Collection(
                name=name,
                description=description,
                embedding_model=embedding_model,
                chunk_size=chunk_size,
                chunk_overlap=chunk_overlap,
                max_retrieval_count=max_retrieval_count,
            )
            db.add(collection)
            db.flush()
            out = collection_out(collection)
        logger.info("Created collection %s (%s)", out.id, name)
        return out

    def list_collections(self) -> List[CollectionOut]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(select(Collection).order_by(Collection.name)).scalars().all()
            return [collection_out(c) for c in rows]

    def get_collection(self, collection_id: int) -> CollectionOut:
        with session_scope(self.session_factory) as db:
            collection = db.get(Collection, collection_id)
            if collection is None:
                raise NotFound("collection", collection_id)
            return collection_out(collection)

    def update_collection(
        self,
        collection_id: int,
        description: Any = _UNSET,
        embedding_model: Any = _UNSET,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        max_retrieval_count: Optional[int] = None,
    ) -> CollectionOut:
        """Change a collection's mutable parameters.

        New chunking parameters apply to documents ingested afterwards; existing chunks
        are left as they are.
        """
        with session_scope(self.session_factory) as db:
            collection = db.get(Collection, collection_id)
            if collection is None:
                raise NotFound("collection", collection_id)
            size = collection.chunk_size if chunk_size is None else chunk_size
            overlap = collection.chunk_overlap if chunk_overlap is None else chunk_overlap
            validate_chunking(size, overlap)
            if max_retrieval_count is not None:
                _check_retrieval_count(max_retrieval_count)
                collection.max_retrieval_count = max_retrieval_count
            collection.chunk_size = size
            collection.chunk_overlap = overlap
            if description is not _UNSET:
                collection.description = description
            if embedding_model is not _UNSET:
                collection.embedding_model = embedding_model
            db.flush()
            return collection_out(collection)

    def delete_collection(self, collection_id: int) -> None:
        """Delete a collection with its documents, chunks, sessions and messages."""
        with session_scope(self.session_factory) as db:
            collection = db.get(Collection, collection_id)
            if collection is None:
                raise NotFound("collection", collection_id)
            db.delete(collection)
        logger.info("Deleted collection %s", collection_id)

    # Documents

    def ingest_document(
        self,
        collection_id: int,
        title: Optional[str],
        content: str,
        source: Optional[str] = None,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        return self.ingestion.ingest(
            collection_id, title, content, source=source, content_type=content_type, metadata=metadata
        )

    def _chunk_counts(self, db, document_ids: List[int]) -> Dict[int, int]:
        if not document_ids:
            return {}
        rows = db.execute(
            select(Chunk.document_id, func.count(Chunk.id))
            .where(Chunk.document_id.in_(document_ids))
            .group_by(Chunk.document_id)
        ).all()
        return {doc_id: count for doc_id, count in rows}

    def list_documents(self, collection_id: int) -> List[DocumentOut]:
        """Documents of a collection, newest first."""
        with session_scope(self.session_factory) as db:
            if db.get(Collection, collection_id) is None:
                raise NotFound("collection", collection_id)
            docs = db.execute(
                select(Document)
                .where(Document.collection_id == collection_id)
                .order_by(Document.created_at.desc(), Document.id.desc())
            ).scalars().all()
            counts = self._chunk_counts(db, [d.id for d in docs])
            return [document_out(d, counts.get(d.id, 0)) for d in docs]

    def get_document(self, document_id: int) -> DocumentOut:
        with session_scope(self.session_factory) as db:
            document = db.get(Document, document_id)
            if document is None:
                raise NotFound("document", document_id)
            return document_out(document, self._chunk_counts(db, [document_id]).get(document_id, 0))

    def delete_document(self, document_id: int) -> None:
        with session_scope(self.session_factory) as db:
            document = db.get(Document, document_id)
            if document is None:
                raise NotFound("document", document_id)
            db.delete(document)
        logger.info("Deleted document %s", document_id)

    # Sessions

    def create_session(
        self,
        collection_id: int,
        title: Optional[str] = None,
        context_window: Optional[int] = None,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        retrieval_count: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> int:
        if retrieval_count is None:
            with session_scope(self.session_factory) as db:
                collection = db.get(Collection, collection_id)
                if collection is None:
                    raise NotFound("collection", collection_id)
                retrieval_count = collection.max_retrieval_count
        return self.sessions.create_session(
            collection_id,
            title=title,
            context_window=context_window,
            temperature=temperature,
            model=model,
            retrieval_count=retrieval_count,
            user_id=user_id,
        )

    def get_session(self, session_id: int) -> SessionOut:
        return self.sessions.get_session(session_id)

    def deactivate_session(self, session_id: int) -> None:
        self.sessions.deactivate(session_id)

    def list_sessions(self, collection_id: int) -> List[SessionOut]:
        return self.sessions.list_sessions(collection_id)

    def query(self, session_id: int, message: str) -> QueryResult:
        return self.sessions.respond(session_id, message)

    def get_chat_history(self, session_id: int) -> List[MessageOut]:
        return self.sessions.history(session_id)

    def list_sources_for_message(self, message_id: int) -> List[Source]:
        return self.sessions.list_sources_for_message(message_id)

    # Status

    def provider_status(self) -> List[ProviderStatus]:
        """Last known probe result per provider, without probing."""
        return [
            provider_status_out(r) for r in self.orchestrator.status()
        ]

    def probe_providers(self) -> List[ProviderStatus]:
        return [
            provider_status_out(r) for r in self.orchestrator.probe_all()
        ]

    def health_check(self) -> HealthResponse:
        """Probe every provider; healthy when at least one is available."""
        providers = self.probe_providers()
        return HealthResponse(healthy=any(p.available for p in providers), providers=providers)

    def get_statistics(self) -> Statistics:
        with session_scope(self.session_factory) as db:
            total_collections = db.execute(select(func.count(Collection.id))).scalar_one()
            total_documents = db.execute(
                select(func.count(Document.id)).where(Document.processing_status == STATUS_COMPLETED)
            ).scalar_one()
            total_sessions = db.execute(select(func.count(ChatSession.id))).scalar_one()
        return Statistics(
            total_collections=total_collections,
            total_documents=total_documents,
            total_sessions=total_sessions,
            total_messages=self.sessions.count_messages(),
            available_providers=[p.provider_name for p in self.provider_status() if p.available],
        )
