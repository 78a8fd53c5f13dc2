"""
Tests for provider adapters with the HTTP layer and SDK client mocked out.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from rag_pipeline import providers as providers_mod
from rag_pipeline.config import Settings
from rag_pipeline.errors import ProviderError
from rag_pipeline.providers import (
    ChatRequest,
    GeminiProvider,
    OllamaProvider,
    OpenAIProvider,
    ProviderConfig,
    build_providers,
)


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.ok = 200 <= status < 300
    resp.status_code = status
    resp.reason = "OK" if resp.ok else "Error"
    resp.json.return_value = payload or {}
    resp.text = ""
    return resp


@pytest.fixture
def ollama():
    return OllamaProvider(
        ProviderConfig(
            name="ollama",
            base_url="http://ollama:11434/",
            chat_model="llama3.2:latest",
            embedding_model="nomic-embed-text:latest",
        )
    )


class TestOllamaProvider:
    def test_probe_lists_models(self, ollama, monkeypatch):
        get = MagicMock(return_value=_response(payload={"models": [{"name": "llama3.2:latest"}, {"name": "mistral"}]}))
        monkeypatch.setattr(providers_mod.requests, "get", get)

        result = ollama.probe(5)

        assert result.available is True
        assert result.models == ["llama3.2:latest", "mistral"]
        assert get.call_args.args[0] == "http://ollama:11434/api/tags"
        assert get.call_args.kwargs["timeout"] == 5

    def test_probe_connection_error_reported_not_raised(self, ollama, monkeypatch):
        monkeypatch.setattr(
            providers_mod.requests, "get", MagicMock(side_effect=requests.ConnectionError("refused"))
        )

        result = ollama.probe(5)

        assert result.available is False
        assert "refused" in result.error

    def test_embed_posts_batch(self, ollama, monkeypatch):
        post = MagicMock(return_value=_response(payload={"embeddings": [[0.1, 0.2], [0.3, 0.4]]}))
        monkeypatch.setattr(providers_mod.requests, "post", post)

        resp = ollama.embed(["a", "b"], timeout=10)

        assert resp.vectors == [[0.1, 0.2], [0.3, 0.4]]
        assert resp.model == "nomic-embed-text:latest"
        assert post.call_args.kwargs["json"] == {"model": "nomic-embed-text:latest", "input": ["a", "b"]}

    def test_http_error_becomes_provider_error(self, ollama, monkeypatch):
        monkeypatch.setattr(
            providers_mod.requests, "post", MagicMock(return_value=_response(404, {"error": "model not found"}))
        )

        with pytest.raises(ProviderError) as excinfo:
            ollama.embed(["a"], timeout=10)
        assert "404" in str(excinfo.value)
        assert "model not found" in str(excinfo.value)

    def test_chat_uses_hint_only_for_known_models(self, ollama, monkeypatch):
        monkeypatch.setattr(
            providers_mod.requests, "get", MagicMock(return_value=_response(payload={"models": [{"name": "mistral"}]}))
        )
        ollama.probe(5)
        post = MagicMock(
            return_value=_response(
                payload={"message": {"content": " hi "}, "model": "mistral", "prompt_eval_count": 3, "eval_count": 4, "done": True}
            )
        )
        monkeypatch.setattr(providers_mod.requests, "post", post)

        resp = ollama.chat(ChatRequest(system="s", prompt="p", model="mistral"), timeout=10)
        assert resp.content == "hi"
        assert resp.model == "mistral"
        assert resp.tokens_used == 7

        ollama.chat(ChatRequest(system="s", prompt="p", model="gpt-4o"), timeout=10)
        assert post.call_args.kwargs["json"]["model"] == "llama3.2:latest"


class TestOpenAIProvider:
    def test_missing_key_fails_and_probes_unavailable(self):
        openai = OpenAIProvider(ProviderConfig(name="openai", chat_model="gpt-3.5-turbo"))

        with pytest.raises(ProviderError) as excinfo:
            openai.chat(ChatRequest(system="s", prompt="p"), timeout=5)
        assert "not configured" in str(excinfo.value)

        status = openai.probe(5)
        assert status.available is False
        assert "api_key" in status.error

    def test_embeddings_placed_by_index(self):
        openai = OpenAIProvider(
            ProviderConfig(name="openai", api_key="sk-test", embedding_model="text-embedding-3-small")
        )
        client = MagicMock()
        client.with_options.return_value.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(index=1, embedding=[2.0]), SimpleNamespace(index=0, embedding=[1.0])],
            model="text-embedding-3-small",
        )
        openai._client = client

        resp = openai.embed(["first", "second"], timeout=5)

        assert resp.vectors == [[1.0], [2.0]]
        client.with_options.assert_called_with(timeout=5)

    def test_chat_reports_served_model_and_usage(self):
        openai = OpenAIProvider(ProviderConfig(name="openai", api_key="sk-test", chat_model="gpt-3.5-turbo"))
        client = MagicMock()
        client.with_options.return_value.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="answer"), finish_reason="stop")],
            usage=SimpleNamespace(total_tokens=12),
            model="gpt-4o-mini-2024-07-18",
        )
        openai._client = client

        resp = openai.chat(ChatRequest(system="s", prompt="p", model="llama3"), timeout=5)

        assert resp.content == "answer"
        assert resp.model == "gpt-4o-mini-2024-07-18"
        assert resp.tokens_used == 12
        kwargs = client.with_options.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-3.5-turbo"


class TestGeminiProvider:
    def test_chat_parses_candidates(self, monkeypatch):
        gemini = GeminiProvider(ProviderConfig(name="gemini", api_key="g-key", chat_model="gemini-1.5-flash"))
        post = MagicMock(
            return_value=_response(
                payload={
                    "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "there"}]}, "finishReason": "STOP"}],
                    "usageMetadata": {"totalTokenCount": 9},
                }
            )
        )
        monkeypatch.setattr(providers_mod.requests, "post", post)

        resp = gemini.chat(ChatRequest(system="s", prompt="p", model="gemini-1.5-pro"), timeout=5)

        assert resp.content == "Hello there"
        assert resp.model == "gemini-1.5-pro"
        assert resp.tokens_used == 9
        assert post.call_args.args[0].endswith("/models/gemini-1.5-pro:generateContent")
        assert post.call_args.kwargs["headers"]["x-goog-api-key"] == "g-key"

    def test_empty_candidates_is_failure(self, monkeypatch):
        gemini = GeminiProvider(ProviderConfig(name="gemini", api_key="g-key", chat_model="gemini-1.5-flash"))
        monkeypatch.setattr(providers_mod.requests, "post", MagicMock(return_value=_response(payload={"candidates": []})))

        with pytest.raises(ProviderError):
            gemini.chat(ChatRequest(system="s", prompt="p"), timeout=5)


def test_build_providers_from_settings():
    settings = Settings(OPENAI_API_KEY="sk-test", GEMINI_API_KEY="", OLLAMA_BASE_URL="http://localhost:11434")

    built = {p.name: p for p in build_providers(settings)}

    assert list(built) == ["ollama", "openai", "gemini"]
    assert built["openai"].missing_fields() == []
    assert built["gemini"].missing_fields() == ["api_key"]
    assert built["ollama"].config.base_url == "http://localhost:11434"
