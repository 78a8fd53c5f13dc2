"""
Shared test fixtures for the RAG pipeline test suite.

Provides: in-memory SQLite storage, scriptable fake provider adapters, a wired RagService
Dependencies: pytest, sqlalchemy
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from rag_pipeline.db import init_db, make_session_factory
from rag_pipeline.fallback import FallbackOrchestrator
from rag_pipeline.service import RagService

from tests.fakes import FakeProvider


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads, with all tables created."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def provider():
    return FakeProvider("primary")


@pytest.fixture
def orchestrator(provider):
    orch = FallbackOrchestrator([provider], embed_timeout=5, chat_timeout=5, probe_timeout=1)
    yield orch
    orch.close()


@pytest.fixture
def service(session_factory, orchestrator):
    return RagService(session_factory, orchestrator)


@pytest.fixture
def collection(service):
    return service.create_collection("docs", chunk_size=100, chunk_overlap=20, max_retrieval_count=2)
