"""Retrieval-augmented generation pipeline with multi-provider failover.

Submodules overview:
- main: FastAPI application exposing the caller-facing contract.
- service: RagService facade wiring the components below.
- config: Application settings and environment variable loading.
- db: Database engine/session management helpers.
- models: ORM models (collections, documents, chunks, sessions, messages).
- schemas: Pydantic request/response models for API contracts.
- errors: Error taxonomy shared by all components.
- providers: Embedding/chat provider adapters (Ollama, OpenAI, Gemini).
- fallback: Ordered provider chains with per-attempt timeouts.
- ingestion: Document ingestion pipeline and the URL ingestion CLI.
- retrieval: Similarity retrieval scoped to a collection.
- sessions: Chat sessions and grounded responses.
- generation: Prompt assembly under a context-window budget.
- cache: Optional Redis cache for query embeddings.
- obs: Observability utilities (tracing/spans).
- utils: Chunking, hashing and HTML helpers.
"""
