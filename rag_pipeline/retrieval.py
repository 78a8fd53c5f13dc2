"""Similarity retrieval over a collection's completed chunks.

Retriever.retrieve:
1. Validates top_k and the query, and checks the collection exists (no provider call
   on failure).
2. Embeds the query through the fallback orchestrator's embedding chain, reusing a
   cached query vector when an EmbeddingCache is configured.
3. Refuses to compare vectors of different widths: if the collection holds chunks
   whose embedding_dim differs from the query vector, EmbeddingDimensionMismatch.
   Equal widths from another provider or model raise EmbeddingModelMismatch.
4. Ranks chunks of completed documents by similarity = 1 - cosine distance and
   returns the top_k, ties broken by document creation time, then chunk ordinal.

On PostgreSQL the ranking is pushed down to pgvector (cosine distance operator); other
dialects (SQLite in tests and local dev) rank the same rows with numpy.
"""
import logging
import math
from typing import Any, List, NamedTuple, Optional

import numpy as np
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from rag_pipeline.cache import EmbeddingCache
from rag_pipeline.db import session_scope
from rag_pipeline.errors import EmbeddingDimensionMismatch, EmbeddingModelMismatch, NotFound, ValidationError
from rag_pipeline.fallback import FallbackOrchestrator
from rag_pipeline.models import STATUS_COMPLETED, Chunk, Collection, Document
from rag_pipeline.providers import EmbeddingResponse
from rag_pipeline.schemas import Source
from rag_pipeline.utils import make_snippet

logger = logging.getLogger(__name__)


class _Candidate(NamedTuple):
    similarity: float
    created_at: Any
    document_id: int
    chunk_index: int
    chunk_id: int
    title: Optional[str]
    content: str
    meta: Optional[dict]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """1 - cosine distance. Zero-length vectors have similarity 0."""
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


def _rank_key(c: _Candidate):
    return (-c.similarity, c.created_at, c.document_id, c.chunk_index)


class Retriever:
    def __init__(
        self,
        session_factory: sessionmaker,
        orchestrator: FallbackOrchestrator,
        cache: Optional[EmbeddingCache] = None,
    ):
        self._session_factory = session_factory
        self._orchestrator = orchestrator
        self._cache = cache

    def embed_query(self, query_text: str) -> EmbeddingResponse:
        chain = self._orchestrator.embedding_chain
        if self._cache is not None:
            cached = self._cache.get(query_text, chain)
            if cached is not None:
                return cached
        embedded = self._orchestrator.embed([query_text])
        if self._cache is not None:
            self._cache.set(query_text, chain, embedded)
        return embedded

    def retrieve(self, query_text: str, collection_id: int, top_k: int) -> List[Source]:
        """Rank the collection's chunks against query_text.

        Args:
            query_text: Free-text query.
            collection_id: Collection to search.
            top_k: Maximum number of sources to return (must be positive).

        Returns:
            List[Source]: At most top_k sources, highest similarity first. Fewer (or
            none) when the collection has fewer eligible chunks.
        """
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
            raise ValidationError("top_k must be a positive integer")
        if not isinstance(query_text, str) or not query_text.strip():
            raise ValidationError("query text is required")

        with session_scope(self._session_factory) as db:
            if db.get(Collection, collection_id) is None:
                raise NotFound("collection", collection_id)

        embedded = self.embed_query(query_text)
        qvec = embedded.vectors[0]

        with session_scope(self._session_factory) as db:
            dims = self._stored_dims(db, collection_id)
            if not dims:
                logger.info("Collection %s has no completed chunks", collection_id)
                return []
            if dims != {len(qvec)}:
                raise EmbeddingDimensionMismatch(len(qvec), dims, provider=embedded.provider)
            spaces = self._stored_spaces(db, collection_id)
            if spaces and spaces != {(embedded.provider, embedded.model)}:
                raise EmbeddingModelMismatch(embedded.provider, embedded.model, spaces)

            if db.get_bind().dialect.name == "postgresql":
                ranked = self._rank_pgvector(db, collection_id, qvec, top_k)
            else:
                ranked = self._rank_numpy(db, collection_id, qvec, top_k)

        logger.info(
            "Retrieved %d sources from collection %s (top_k=%d, best=%.3f)",
            len(ranked), collection_id, top_k, ranked[0].similarity if ranked else 0.0,
        )
        return [
            Source(
                id=c.chunk_id,
                document_id=c.document_id,
                chunk_index=c.chunk_index,
                title=c.title,
                content=c.content,
                snippet=make_snippet(c.content),
                score=c.similarity,
                metadata=c.meta or {},
            )
            for c in ranked
        ]

    @staticmethod
    def _eligible(stmt, collection_id: int):
        return stmt.join(Document, Chunk.document_id == Document.id).where(
            Document.collection_id == collection_id,
            Document.processing_status == STATUS_COMPLETED,
        )

    def _stored_dims(self, db: Session, collection_id: int) -> set:
        stmt = self._eligible(select(Chunk.embedding_dim).distinct(), collection_id)
        return {int(d) for d in db.execute(stmt).scalars().all()}

    def _stored_spaces(self, db: Session, collection_id: int) -> set:
        # Chunks written without provenance cannot be checked and are left out.
        stmt = self._eligible(
            select(Chunk.embedding_provider, Chunk.embedding_model).distinct(), collection_id
        ).where(Chunk.embedding_provider.is_not(None))
        return {(r.embedding_provider, r.embedding_model) for r in db.execute(stmt).all()}

    def _rank_pgvector(self, db: Session, collection_id: int, qvec: List[float], top_k: int) -> List[_Candidate]:
        distance = Chunk.embedding.cosine_distance(qvec)
        stmt = self._eligible(
            select(
                distance.label("distance"),
                Document.created_at,
                Chunk.document_id,
                Chunk.chunk_index,
                Chunk.id,
                Document.title,
                Chunk.content,
                Chunk.meta.label("meta"),
            ),
            collection_id,
        ).order_by(distance, Document.created_at, Chunk.document_id, Chunk.chunk_index).limit(top_k)
        out: List[_Candidate] = []
        for r in db.execute(stmt).all():
            dist = float(r.distance) if r.distance is not None else math.nan
            sim = 0.0 if math.isnan(dist) else 1.0 - dist
            out.append(_Candidate(sim, r.created_at, r.document_id, r.chunk_index, r.id, r.title, r.content, r.meta))
        # NaN distances (zero vectors) sort last in Postgres; normalise order after mapping to 0.0
        return sorted(out, key=_rank_key)

    def _rank_numpy(self, db: Session, collection_id: int, qvec: List[float], top_k: int) -> List[_Candidate]:
        stmt = self._eligible(
            select(
                Chunk.embedding,
                Document.created_at,
                Chunk.document_id,
                Chunk.chunk_index,
                Chunk.id,
                Document.title,
                Chunk.content,
                Chunk.meta.label("meta"),
            ),
            collection_id,
        )
        q = np.asarray(qvec, dtype=float)
        scored = [
            _Candidate(
                cosine_similarity(q, np.asarray(r.embedding, dtype=float)),
                r.created_at, r.document_id, r.chunk_index, r.id, r.title, r.content, r.meta,
            )
            for r in db.execute(stmt).all()
        ]
        scored.sort(key=_rank_key)
        return scored[:top_k]
