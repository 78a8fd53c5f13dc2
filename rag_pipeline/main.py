"""FastAPI application entrypoint and routes.

Exposes the caller-facing contract over HTTP: collections, document ingestion,
chat sessions with grounded answers, message citations, provider status, health and
statistics. The RagService is built at startup from Settings unless one is injected
(create_app(service=...)), which is how tests run the app against SQLite.

Error mapping:
- ValidationError -> 422, NotFound -> 404
- SessionInactive, EmbeddingDimensionMismatch and EmbeddingModelMismatch -> 409
- ProviderChainExhausted -> 502 with one reason per provider
- StorageFailure -> 500
"""
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rag_pipeline.config import Settings, get_settings
from rag_pipeline.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingModelMismatch,
    NotFound,
    ProviderChainExhausted,
    SessionInactive,
    StorageFailure,
    ValidationError,
)
from rag_pipeline.schemas import (
    CollectionCreate,
    CollectionOut,
    CollectionUpdate,
    DocumentOut,
    HealthResponse,
    IngestRequest,
    IngestResult,
    MessageOut,
    ProviderStatus,
    QueryRequest,
    QueryResult,
    SessionCreate,
    SessionCreated,
    SessionOut,
    Source,
    Statistics,
)
from rag_pipeline.service import RagService

logger = logging.getLogger(__name__)


def get_service(request: Request) -> RagService:
    return request.app.state.service


def _install_error_handlers(app: FastAPI) -> None:
    def _error(status: int, exc: Exception, **extra) -> JSONResponse:
        return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc), **extra})

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return _error(422, exc)

    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound):
        return _error(404, exc)

    @app.exception_handler(SessionInactive)
    async def _inactive(request: Request, exc: SessionInactive):
        return _error(409, exc)

    @app.exception_handler(EmbeddingDimensionMismatch)
    async def _dim_mismatch(request: Request, exc: EmbeddingDimensionMismatch):
        return _error(409, exc, query_dim=exc.query_dim, stored_dims=exc.stored_dims)

    @app.exception_handler(EmbeddingModelMismatch)
    async def _model_mismatch(request: Request, exc: EmbeddingModelMismatch):
        return _error(
            409, exc, query_provider=exc.query_provider, query_model=exc.query_model, stored=exc.stored_models()
        )

    @app.exception_handler(ProviderChainExhausted)
    async def _exhausted(request: Request, exc: ProviderChainExhausted):
        return _error(502, exc, operation=exc.operation, failures=exc.reasons())

    @app.exception_handler(StorageFailure)
    async def _storage(request: Request, exc: StorageFailure):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return _error(500, exc)


def create_app(service: Optional[RagService] = None, settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(title="RAG Pipeline API", version="0.1.0")
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_credentials=True,
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    @app.on_event("startup")
    def on_startup() -> None:
        """Configure logging and build the service (creating tables) unless one was injected."""
        if app.state.service is not None:
            return
        cfg = settings or get_settings()
        logging.basicConfig(
            level=getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO),
            format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        )
        app.state.service = RagService.from_settings(cfg)
        logger.info("RAG service ready (embed chain=%s, chat chain=%s)", cfg.EMBEDDING_CHAIN, cfg.CHAT_CHAIN)

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        if app.state.service is not None:
            app.state.service.close()

    # Status

    @app.get("/health", response_model=HealthResponse)
    def health(svc: RagService = Depends(get_service)) -> HealthResponse:
        """Probe all providers; healthy when at least one is available."""
        return svc.health_check()

    @app.get("/providers", response_model=List[ProviderStatus])
    def providers(refresh: bool = False, svc: RagService = Depends(get_service)):
        """Last known provider status, or a fresh probe with ?refresh=true."""
        return svc.probe_providers() if refresh else svc.provider_status()

    @app.get("/stats", response_model=Statistics)
    def stats(svc: RagService = Depends(get_service)):
        return svc.get_statistics()

    # Collections

    @app.post("/collections", response_model=CollectionOut, status_code=201)
    def create_collection(req: CollectionCreate, svc: RagService = Depends(get_service)):
        return svc.create_collection(**req.model_dump())

    @app.get("/collections", response_model=List[CollectionOut])
    def list_collections(svc: RagService = Depends(get_service)):
        return svc.list_collections()

    @app.get("/collections/{collection_id}", response_model=CollectionOut)
    def get_collection(collection_id: int, svc: RagService = Depends(get_service)):
        return svc.get_collection(collection_id)

    @app.patch("/collections/{collection_id}", response_model=CollectionOut)
    def update_collection(collection_id: int, req: CollectionUpdate, svc: RagService = Depends(get_service)):
        return svc.update_collection(collection_id, **req.model_dump(exclude_unset=True))

    @app.delete("/collections/{collection_id}", status_code=204)
    def delete_collection(collection_id: int, svc: RagService = Depends(get_service)):
        svc.delete_collection(collection_id)

    @app.get("/collections/{collection_id}/documents", response_model=List[DocumentOut])
    def list_documents(collection_id: int, svc: RagService = Depends(get_service)):
        return svc.list_documents(collection_id)

    @app.get("/collections/{collection_id}/sessions", response_model=List[SessionOut])
    def list_sessions(collection_id: int, svc: RagService = Depends(get_service)):
        return svc.list_sessions(collection_id)

    # Documents

    @app.post("/documents", response_model=IngestResult, status_code=201)
    def ingest_document(req: IngestRequest, svc: RagService = Depends(get_service)):
        """Chunk, embed and store one document; 502 when every embedding provider fails."""
        return svc.ingest_document(
            req.collection_id,
            req.title,
            req.content,
            source=req.source,
            content_type=req.content_type,
            metadata=req.metadata,
        )

    @app.get("/documents/{document_id}", response_model=DocumentOut)
    def get_document(document_id: int, svc: RagService = Depends(get_service)):
        return svc.get_document(document_id)

    @app.delete("/documents/{document_id}", status_code=204)
    def delete_document(document_id: int, svc: RagService = Depends(get_service)):
        svc.delete_document(document_id)

    # Sessions

    @app.post("/sessions", response_model=SessionCreated, status_code=201)
    def create_session(req: SessionCreate, svc: RagService = Depends(get_service)):
        return SessionCreated(session_id=svc.create_session(**req.model_dump()))

    @app.get("/sessions/{session_id}", response_model=SessionOut)
    def get_session(session_id: int, svc: RagService = Depends(get_service)):
        return svc.get_session(session_id)

    @app.post("/sessions/{session_id}/deactivate", status_code=204)
    def deactivate_session(session_id: int, svc: RagService = Depends(get_service)):
        svc.deactivate_session(session_id)

    @app.get("/sessions/{session_id}/messages", response_model=List[MessageOut])
    def chat_history(session_id: int, svc: RagService = Depends(get_service)):
        return svc.get_chat_history(session_id)

    @app.post("/sessions/{session_id}/query", response_model=QueryResult)
    def query(session_id: int, req: QueryRequest, svc: RagService = Depends(get_service)):
        """Answer a message in a session, grounded in the session's collection.

        Returns:
            QueryResult: Answer, cited sources, token usage and the provider/model that served it.
        """
        return svc.query(session_id, req.message)

    @app.get("/messages/{message_id}/sources", response_model=List[Source])
    def message_sources(message_id: int, svc: RagService = Depends(get_service)):
        return svc.list_sources_for_message(message_id)

    return app


app = create_app()
