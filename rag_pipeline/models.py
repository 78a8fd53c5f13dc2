"""Database ORM models.

Defines persistent entities used by the RAG pipeline:
- Collection: named group of documents sharing chunking/retrieval parameters.
- Document: one ingested text with its processing status.
- Chunk: a contiguous substring of a document plus its pgvector embedding.
- ChatSession: a conversation scoped to one collection.
- Message: one appended chat turn, with cited sources for assistant turns.

Deleting a collection cascades to its documents, chunks, sessions and messages.
"""
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from rag_pipeline.db import Base

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
PROCESSING_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class Collection(Base):
    __tablename__ = "collections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    embedding_model = Column(String(100), nullable=True)  # informational; chains decide
    chunk_size = Column(Integer, nullable=False, default=1000)
    chunk_overlap = Column(Integer, nullable=False, default=200)
    max_retrieval_count = Column(Integer, nullable=False, default=5)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    documents = relationship(
        "Document", back_populates="collection", cascade="all, delete-orphan"
    )
    sessions = relationship(
        "ChatSession", back_populates="collection", cascade="all, delete-orphan"
    )


class Document(Base):
    """One ingested unit of text.

    processing_status moves pending -> processing -> completed|failed once per
    ingestion attempt. A failed document never owns chunk rows.
    """
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection_id = Column(
        Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
    )
    title = Column(String(500), nullable=True)
    content = Column(Text, nullable=False)
    source = Column(String(1024), nullable=True)
    content_type = Column(String(100), nullable=True)
    content_hash = Column(String(64), nullable=True)  # caller-side dedup only, not unique
    meta = Column("metadata", JSON, nullable=True)
    processing_status = Column(String(20), nullable=False, default=STATUS_PENDING)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    collection = relationship("Collection", back_populates="documents")
    chunks = relationship(
        "Chunk",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="Chunk.chunk_index",
    )

    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_documents_processing_status",
        ),
        Index("idx_documents_collection", "collection_id"),
        Index("idx_documents_status", "processing_status"),
        Index("idx_documents_content_hash", "content_hash"),
    )


class Chunk(Base):
    """Vector-embedded document chunk used for retrieval.

    Each row represents one window of its document along with:
    - chunk_index: ordinal within the document, contiguous from 0
    - content: the (trimmed) window text
    - embedding: untyped pgvector column so vectors from different providers can coexist
    - embedding_dim: vector width, used to refuse mismatched comparisons at query time
    - embedding_provider / embedding_model: the space the vector lives in; queries embedded
      by another provider or model are refused
    - meta: citation metadata copied from the document plus the embedding provider/model
    """
    __tablename__ = "chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)

    embedding = Column(Vector(), nullable=False)
    embedding_dim = Column(Integer, nullable=False)
    embedding_provider = Column(String(100), nullable=True)
    embedding_model = Column(String(255), nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    document = relationship("Document", back_populates="chunks")

    __table_args__ = (
        Index("uq_chunks_document_index", "document_id", "chunk_index", unique=True),
        Index("idx_chunks_dim", "embedding_dim"),
    )


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection_id = Column(
        Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(64), nullable=True)  # owned by the host's auth layer
    title = Column(String(255), nullable=True)
    context_window = Column(Integer, nullable=False, default=4000)
    temperature = Column(Float, nullable=False, default=0.7)
    model = Column(String(100), nullable=False, default="auto")
    retrieval_count = Column(Integer, nullable=False, default=5)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    collection = relationship("Collection", back_populates="sessions")
    messages = relationship(
        "Message",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )

    __table_args__ = (
        Index("idx_sessions_collection", "collection_id"),
        Index("idx_sessions_active", "is_active"),
    )


class Message(Base):
    """Append-only chat turn. The autoincrement id gives the total order within a session."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        Integer, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    sources = Column(JSON, nullable=True)  # list of Source citations
    tokens_used = Column(Integer, nullable=True)
    model = Column(String(100), nullable=True)
    provider = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    session = relationship("ChatSession", back_populates="messages")

    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="ck_messages_role"),
        Index("idx_messages_session", "session_id"),
    )
