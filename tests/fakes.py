"""
Scriptable fake provider adapter and a deterministic keyword embedding for tests.
"""

import time
from typing import Callable, List, Optional

from rag_pipeline.errors import ProviderError
from rag_pipeline.providers import (
    ChatRequest,
    ChatResponse,
    EmbeddingResponse,
    ProviderAdapter,
    ProviderConfig,
)

VOCAB = ["python", "postgres", "vector", "chat", "provider", "ollama"]


def keyword_vector(text: str) -> List[float]:
    """Deterministic embedding: keyword counts plus a constant bias component."""
    lowered = text.lower()
    return [float(lowered.count(w)) for w in VOCAB] + [1.0]


class FakeProvider(ProviderAdapter):
    """Provider adapter driven entirely by the test.

    Args:
        name: Provider name used in chains and failure reasons.
        embed_fn: texts -> vectors; defaults to keyword_vector per text.
        chat_fn: ChatRequest -> answer text.
        fail: When set, every embed/chat call raises ProviderError with this message.
        delay: Seconds to sleep before answering (for timeout tests).
        available: Probe outcome.
    """

    required_fields = ()

    def __init__(
        self,
        name: str,
        embed_fn: Optional[Callable[[List[str]], List[List[float]]]] = None,
        chat_fn: Optional[Callable[[ChatRequest], str]] = None,
        fail: Optional[str] = None,
        delay: float = 0.0,
        available: bool = True,
        model: str = "fake-model",
    ):
        super().__init__(ProviderConfig(name=name, chat_model=model, embedding_model=f"{model}-embed"))
        self.embed_fn = embed_fn or (lambda texts: [keyword_vector(t) for t in texts])
        self.chat_fn = chat_fn or (lambda req: f"answer from {name}")
        self.fail = fail
        self.delay = delay
        self.available = available
        self.embed_calls: List[List[str]] = []
        self.chat_calls: List[ChatRequest] = []
        self.probe_calls = 0

    def _maybe_fail(self):
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ProviderError(self.name, self.fail)

    def _embed(self, texts, timeout):
        self.embed_calls.append(list(texts))
        self._maybe_fail()
        return EmbeddingResponse(
            vectors=self.embed_fn(list(texts)), model=self.config.embedding_model, provider=self.name
        )

    def _chat(self, request, timeout):
        self.chat_calls.append(request)
        self._maybe_fail()
        return ChatResponse(
            content=self.chat_fn(request),
            model=self.resolve_model(request.model),
            provider=self.name,
            tokens_used=42,
            finish_reason="stop",
        )

    def _probe(self, timeout):
        self.probe_calls += 1
        if not self.available:
            raise ConnectionError(f"{self.name} is down")
        return [self.config.chat_model]

