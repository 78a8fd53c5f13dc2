"""
Tests for the HTTP surface: routes, status codes and error mapping.
"""

import pytest
from fastapi.testclient import TestClient

from rag_pipeline.fallback import FallbackOrchestrator
from rag_pipeline.main import create_app
from rag_pipeline.service import RagService

from tests.fakes import FakeProvider


@pytest.fixture
def client(service):
    with TestClient(create_app(service=service)) as c:
        yield c


@pytest.fixture
def collection_id(client):
    resp = client.post("/collections", json={"name": "docs", "chunk_size": 100, "chunk_overlap": 20})
    assert resp.status_code == 201
    return resp.json()["id"]


def _ingest(client, collection_id, content="python vector notes", title="Notes"):
    resp = client.post("/documents", json={"collection_id": collection_id, "title": title, "content": content})
    assert resp.status_code == 201
    return resp.json()


class TestCollectionRoutes:
    def test_crud(self, client, collection_id):
        assert [c["name"] for c in client.get("/collections").json()] == ["docs"]

        resp = client.patch(f"/collections/{collection_id}", json={"chunk_size": 300})
        assert resp.status_code == 200
        assert resp.json()["chunk_size"] == 300

        assert client.delete(f"/collections/{collection_id}").status_code == 204
        assert client.get(f"/collections/{collection_id}").status_code == 404

    def test_invalid_overlap_is_422(self, client):
        resp = client.post("/collections", json={"name": "bad", "chunk_size": 50, "chunk_overlap": 50})
        assert resp.status_code == 422
        assert resp.json()["error"] == "ValidationError"


class TestDocumentRoutes:
    def test_ingest_and_list(self, client, collection_id):
        result = _ingest(client, collection_id, content="x" * 250)
        assert result["chunk_count"] == 4
        assert result["embedding_count"] == 4

        docs = client.get(f"/collections/{collection_id}/documents").json()
        assert docs[0]["id"] == result["document_id"]
        assert docs[0]["processing_status"] == "completed"

        assert client.delete(f"/documents/{result['document_id']}").status_code == 204
        assert client.get(f"/documents/{result['document_id']}").status_code == 404

    def test_unknown_collection_is_404(self, client):
        resp = client.post("/documents", json={"collection_id": 42, "content": "text"})
        assert resp.status_code == 404


class TestSessionRoutes:
    def test_query_flow(self, client, collection_id):
        _ingest(client, collection_id)
        session_id = client.post("/sessions", json={"collection_id": collection_id, "retrieval_count": 2}).json()[
            "session_id"
        ]

        resp = client.post(f"/sessions/{session_id}/query", json={"message": "python?"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["provider"] == "primary"
        assert len(body["sources"]) == 1

        history = client.get(f"/sessions/{session_id}/messages").json()
        assert [m["role"] for m in history] == ["user", "assistant"]

        sources = client.get(f"/messages/{body['message_id']}/sources").json()
        assert sources[0]["id"] == body["sources"][0]["id"]

    def test_inactive_session_is_409(self, client, collection_id):
        session_id = client.post("/sessions", json={"collection_id": collection_id}).json()["session_id"]
        assert client.post(f"/sessions/{session_id}/deactivate").status_code == 204

        resp = client.post(f"/sessions/{session_id}/query", json={"message": "hi"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "SessionInactive"

    def test_empty_message_is_422(self, client, collection_id):
        session_id = client.post("/sessions", json={"collection_id": collection_id}).json()["session_id"]
        assert client.post(f"/sessions/{session_id}/query", json={"message": ""}).status_code == 422


class TestStatusRoutes:
    def test_health_and_stats(self, client, collection_id):
        health = client.get("/health").json()
        assert health["healthy"] is True
        assert health["providers"][0]["provider_name"] == "primary"

        stats = client.get("/stats").json()
        assert stats["total_collections"] == 1
        assert stats["available_providers"] == ["primary"]

    def test_providers_without_probe_are_unknown(self, client):
        (status,) = client.get("/providers").json()
        assert status == {"provider_name": "primary", "available": False, "error": "not probed", "models": []}
        (status,) = client.get("/providers", params={"refresh": "true"}).json()
        assert status["available"] is True
        assert status["models"] == ["fake-model"]


def test_exhausted_chain_is_502_with_reasons(session_factory):
    orch = FallbackOrchestrator([FakeProvider("a", fail="down"), FakeProvider("b", fail="quota")])
    svc = RagService(session_factory, orch)
    with TestClient(create_app(service=svc)) as client:
        coll = client.post("/collections", json={"name": "docs"}).json()
        resp = client.post("/documents", json={"collection_id": coll["id"], "content": "text"})

    assert resp.status_code == 502
    body = resp.json()
    assert body["operation"] == "embed"
    assert body["failures"] == [
        {"provider": "a", "reason": "down"},
        {"provider": "b", "reason": "quota"},
    ]


def test_query_embedded_by_other_model_is_409(client, collection_id, session_factory):
    _ingest(client, collection_id)
    orch = FallbackOrchestrator([FakeProvider("backup", model="backup-model")])
    svc = RagService(session_factory, orch)
    with TestClient(create_app(service=svc)) as other:
        session_id = other.post("/sessions", json={"collection_id": collection_id}).json()["session_id"]
        resp = other.post(f"/sessions/{session_id}/query", json={"message": "python?"})

    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] == "EmbeddingModelMismatch"
    assert body["stored"] == [{"provider": "primary", "model": "fake-model-embed"}]
