"""Pydantic request/response schemas for the caller-facing contract.

Defines the public contracts used by RagService and the FastAPI endpoints:
- CollectionCreate / CollectionUpdate / CollectionOut: collection management.
- IngestRequest / IngestResult / DocumentOut: document ingestion and listing.
- SessionCreate / SessionCreated / SessionOut: chat session lifecycle.
- QueryRequest / QueryResult / MessageOut: grounded chat turns and history.
- Source: citation projection of a chunk at retrieval time.
- ProviderStatus / HealthResponse / Statistics: read-only status surfaces.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Source(BaseModel):
    """A retrieved chunk as cited by an answer.

    Attributes:
        id: Chunk id.
        document_id: Owning document id.
        chunk_index: Ordinal of the chunk within its document.
        title: Document title for display.
        content: Full chunk text.
        snippet: Short excerpt shown as evidence.
        score: Similarity, 1 - cosine distance; higher is more relevant.
        metadata: Citation metadata stored with the chunk.
    """
    id: int
    document_id: int
    chunk_index: int
    title: Optional[str] = None
    content: str
    snippet: str = ""
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CollectionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    embedding_model: Optional[str] = None
    chunk_size: Optional[int] = None
    chunk_overlap: Optional[int] = None
    max_retrieval_count: Optional[int] = None


class CollectionUpdate(BaseModel):
    description: Optional[str] = None
    embedding_model: Optional[str] = None
    chunk_size: Optional[int] = None
    chunk_overlap: Optional[int] = None
    max_retrieval_count: Optional[int] = None


class CollectionOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    embedding_model: Optional[str] = None
    chunk_size: int
    chunk_overlap: int
    max_retrieval_count: int
    created_at: datetime
    updated_at: datetime


class IngestRequest(BaseModel):
    """Request body for ingesting one document into a collection."""
    collection_id: int
    title: Optional[str] = None
    content: str = Field(..., min_length=1)
    source: Optional[str] = None
    content_type: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class IngestResult(BaseModel):
    document_id: int
    chunk_count: int
    embedding_count: int
    provider: Optional[str] = None
    model: Optional[str] = None


class DocumentOut(BaseModel):
    id: int
    collection_id: int
    title: Optional[str] = None
    source: Optional[str] = None
    content_type: Optional[str] = None
    content_hash: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    processing_status: str
    error_message: Optional[str] = None
    chunk_count: int = 0
    created_at: datetime
    updated_at: datetime


class SessionCreate(BaseModel):
    collection_id: int
    title: Optional[str] = None
    context_window: Optional[int] = None
    temperature: Optional[float] = None
    model: Optional[str] = None
    retrieval_count: Optional[int] = None
    user_id: Optional[str] = None


class SessionCreated(BaseModel):
    session_id: int


class SessionOut(BaseModel):
    id: int
    collection_id: int
    user_id: Optional[str] = None
    title: Optional[str] = None
    context_window: int
    temperature: float
    model: str
    retrieval_count: int
    is_active: bool
    created_at: datetime


class QueryRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message")


class QueryResult(BaseModel):
    """Assistant turn returned to the caller.

    Attributes:
        content: Generated answer text.
        sources: Sources included in the prompt and cited by the answer.
        tokens_used: Token usage reported by the provider.
        model: Model that actually served the completion.
        provider: Provider that served the completion.
        message_id: Id of the persisted assistant message.
    """
    content: str
    sources: List[Source]
    tokens_used: int = 0
    model: str
    provider: str
    message_id: Optional[int] = None


class MessageOut(BaseModel):
    id: int
    session_id: int
    role: str
    content: str
    sources: List[Source] = Field(default_factory=list)
    tokens_used: Optional[int] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    created_at: datetime


class ProviderStatus(BaseModel):
    provider_name: str
    available: bool
    error: Optional[str] = None
    models: List[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    healthy: bool
    providers: List[ProviderStatus]


class Statistics(BaseModel):
    total_collections: int
    total_documents: int
    total_sessions: int
    total_messages: int
    available_providers: List[str]
