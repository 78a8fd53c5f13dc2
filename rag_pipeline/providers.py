"""Provider adapters for text embeddings and chat completions.

Each adapter implements the same capability interface:
- embed(texts, timeout) -> EmbeddingResponse: one vector per input text, in input order
- chat(request, timeout) -> ChatResponse: completion plus the model that actually served it
- probe(timeout) -> ProbeResult: health check that never raises

Adapters:
- OllamaProvider: local inference over the Ollama REST API (requests)
- OpenAIProvider: OpenAI embeddings/chat completions (openai SDK)
- GeminiProvider: Google Gemini REST API (requests)

Adapters are resolved from configuration (see build_providers); the fallback
orchestrator decides which one serves a call.
"""
import abc
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import requests
from openai import OpenAI

from rag_pipeline.config import Settings
from rag_pipeline.errors import ProviderError

logger = logging.getLogger(__name__)

AUTO_MODEL = "auto"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


@dataclass
class ProviderConfig:
    """Opaque connection parameters for one provider."""
    name: str
    base_url: str = ""
    api_key: str = ""
    organization: str = ""
    chat_model: str = ""
    embedding_model: str = ""


@dataclass
class ChatRequest:
    system: str
    prompt: str
    temperature: float = 0.7
    model: Optional[str] = None  # hint; adapters substitute their default if unsupported
    max_tokens: int = 2048


@dataclass
class ChatResponse:
    content: str
    model: str
    provider: str
    tokens_used: int = 0
    finish_reason: Optional[str] = None


@dataclass
class EmbeddingResponse:
    vectors: List[List[float]]
    model: str
    provider: str

    @property
    def dimension(self) -> int:
        return len(self.vectors[0]) if self.vectors else 0


@dataclass
class ProbeResult:
    provider_name: str
    available: bool
    error: Optional[str] = None
    models: List[str] = field(default_factory=list)


class ProviderAdapter(abc.ABC):
    """Base class for provider adapters.

    Subclasses declare which ProviderConfig fields they need in required_fields and
    implement _embed, _chat and _probe. The public methods check configuration first so
    an unconfigured provider fails like any other provider failure.
    """

    required_fields: Tuple[str, ...] = ()

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    def missing_fields(self) -> List[str]:
        return [f for f in self.required_fields if not getattr(self.config, f, "")]

    def ensure_configured(self) -> None:
        missing = self.missing_fields()
        if missing:
            raise ProviderError(self.name, f"not configured (missing {', '.join(missing)})")

    def supports_model(self, model: str) -> bool:
        return False

    def resolve_model(self, hint: Optional[str]) -> str:
        """Use the caller's model hint when this provider can serve it, else the default."""
        if hint and hint != AUTO_MODEL and self.supports_model(hint):
            return hint
        return self.config.chat_model

    def embed(self, texts: Sequence[str], timeout: float) -> EmbeddingResponse:
        self.ensure_configured()
        return self._embed(list(texts), timeout)

    def chat(self, request: ChatRequest, timeout: float) -> ChatResponse:
        self.ensure_configured()
        return self._chat(request, timeout)

    def probe(self, timeout: float) -> ProbeResult:
        """Check availability. Failures are reported as unavailable, never raised."""
        try:
            self.ensure_configured()
            models = self._probe(timeout)
        except Exception as exc:
            logger.info("Provider %s not available: %s", self.name, exc)
            return ProbeResult(provider_name=self.name, available=False, error=str(exc))
        return ProbeResult(provider_name=self.name, available=True, models=list(models or []))

    @abc.abstractmethod
    def _embed(self, texts: List[str], timeout: float) -> EmbeddingResponse:
        ...

    @abc.abstractmethod
    def _chat(self, request: ChatRequest, timeout: float) -> ChatResponse:
        ...

    @abc.abstractmethod
    def _probe(self, timeout: float) -> List[str]:
        ...


def _raise_for_status(provider: str, resp: requests.Response) -> None:
    if resp.ok:
        return
    detail = ""
    try:
        body = resp.json()
        err = body.get("error") if isinstance(body, dict) else None
        if isinstance(err, dict):
            detail = err.get("message", "")
        elif err:
            detail = str(err)
    except ValueError:
        detail = (resp.text or "")[:200]
    raise ProviderError(provider, f"HTTP {resp.status_code} {resp.reason or ''} {detail}".strip())


class OllamaProvider(ProviderAdapter):
    """Local inference via the Ollama REST API."""

    required_fields = ("base_url",)

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self._known_models: List[str] = []

    def _url(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + path

    def supports_model(self, model: str) -> bool:
        return model in self._known_models

    def _probe(self, timeout: float) -> List[str]:
        resp = requests.get(self._url("/api/tags"), timeout=timeout)
        _raise_for_status(self.name, resp)
        data = resp.json()
        self._known_models = [m.get("name", "") for m in data.get("models", []) if m.get("name")]
        return self._known_models

    def _embed(self, texts: List[str], timeout: float) -> EmbeddingResponse:
        model = self.config.embedding_model
        resp = requests.post(
            self._url("/api/embed"),
            json={"model": model, "input": texts},
            timeout=timeout,
        )
        _raise_for_status(self.name, resp)
        data = resp.json()
        if data.get("error"):
            raise ProviderError(self.name, str(data["error"]))
        return EmbeddingResponse(
            vectors=[list(v) for v in data.get("embeddings") or []],
            model=data.get("model") or model,
            provider=self.name,
        )

    def _chat(self, request: ChatRequest, timeout: float) -> ChatResponse:
        model = self.resolve_model(request.model)
        resp = requests.post(
            self._url("/api/chat"),
            json={
                "model": model,
                "messages": [
                    {"role": "system", "content": request.system},
                    {"role": "user", "content": request.prompt},
                ],
                "stream": False,
                "options": {"temperature": request.temperature, "num_predict": request.max_tokens},
            },
            timeout=timeout,
        )
        _raise_for_status(self.name, resp)
        data = resp.json()
        if data.get("error"):
            raise ProviderError(self.name, str(data["error"]))
        message = data.get("message") or {}
        return ChatResponse(
            content=(message.get("content") or "").strip(),
            model=data.get("model") or model,
            provider=self.name,
            tokens_used=int(data.get("prompt_eval_count") or 0) + int(data.get("eval_count") or 0),
            finish_reason=data.get("done_reason") or ("stop" if data.get("done") else None),
        )


class OpenAIProvider(ProviderAdapter):
    """OpenAI embeddings and chat completions through the official SDK."""

    required_fields = ("api_key",)

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self._client: Optional[OpenAI] = None

    def get_client(self) -> OpenAI:
        """Return a cached client. SDK retries are disabled; the chain handles failover."""
        if self._client is None:
            self._client = OpenAI(
                api_key=self.config.api_key,
                organization=self.config.organization or None,
                max_retries=0,
            )
        return self._client

    def supports_model(self, model: str) -> bool:
        return model.startswith(("gpt-", "o1", "o3", "o4", "chatgpt-"))

    def _probe(self, timeout: float) -> List[str]:
        page = self.get_client().with_options(timeout=timeout).models.list()
        return [m.id for m in page.data]

    def _embed(self, texts: List[str], timeout: float) -> EmbeddingResponse:
        model = self.config.embedding_model
        resp = self.get_client().with_options(timeout=timeout).embeddings.create(
            model=model, input=texts
        )
        # Place each vector by its reported input index
        vectors: List[Optional[List[float]]] = [None] * len(resp.data)
        for d in resp.data:
            if d.index < 0 or d.index >= len(vectors) or vectors[d.index] is not None:
                raise ProviderError(self.name, f"embedding index {d.index} out of order")
            vectors[d.index] = list(d.embedding)
        return EmbeddingResponse(vectors=vectors, model=resp.model or model, provider=self.name)

    def _chat(self, request: ChatRequest, timeout: float) -> ChatResponse:
        model = self.resolve_model(request.model)
        resp = self.get_client().with_options(timeout=timeout).chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.prompt},
            ],
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )
        choice = resp.choices[0]
        usage = resp.usage
        return ChatResponse(
            content=(choice.message.content or "").strip(),
            model=resp.model or model,
            provider=self.name,
            tokens_used=usage.total_tokens if usage else 0,
            finish_reason=choice.finish_reason,
        )


class GeminiProvider(ProviderAdapter):
    """Google Gemini over the Generative Language REST API."""

    required_fields = ("api_key",)

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.config.api_key, "Content-Type": "application/json"}

    def _url(self, path: str) -> str:
        base = self.config.base_url or GEMINI_API_BASE
        return base.rstrip("/") + path

    def supports_model(self, model: str) -> bool:
        return model.startswith("gemini")

    def _probe(self, timeout: float) -> List[str]:
        resp = requests.get(self._url("/models"), headers=self._headers(), timeout=timeout)
        _raise_for_status(self.name, resp)
        return [m.get("name", "") for m in resp.json().get("models", [])]

    def _embed(self, texts: List[str], timeout: float) -> EmbeddingResponse:
        model = self.config.embedding_model
        body = {
            "requests": [
                {"model": f"models/{model}", "content": {"parts": [{"text": t}]}} for t in texts
            ]
        }
        resp = requests.post(
            self._url(f"/models/{model}:batchEmbedContents"),
            headers=self._headers(),
            json=body,
            timeout=timeout,
        )
        _raise_for_status(self.name, resp)
        embeddings = resp.json().get("embeddings") or []
        return EmbeddingResponse(
            vectors=[list(e.get("values") or []) for e in embeddings],
            model=model,
            provider=self.name,
        )

    def _chat(self, request: ChatRequest, timeout: float) -> ChatResponse:
        model = self.resolve_model(request.model)
        body = {
            "systemInstruction": {"parts": [{"text": request.system}]},
            "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }
        resp = requests.post(
            self._url(f"/models/{model}:generateContent"),
            headers=self._headers(),
            json=body,
            timeout=timeout,
        )
        _raise_for_status(self.name, resp)
        data = resp.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError(self.name, "response contained no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts)
        usage = data.get("usageMetadata") or {}
        return ChatResponse(
            content=text.strip(),
            model=data.get("modelVersion") or model,
            provider=self.name,
            tokens_used=int(usage.get("totalTokenCount") or 0),
            finish_reason=candidates[0].get("finishReason"),
        )


ADAPTERS = {
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def provider_configs(settings: Settings) -> List[ProviderConfig]:
    """Connection parameters for every known provider, taken from settings."""
    return [
        ProviderConfig(
            name="ollama",
            base_url=settings.OLLAMA_BASE_URL,
            chat_model=settings.OLLAMA_CHAT_MODEL,
            embedding_model=settings.OLLAMA_EMBEDDING_MODEL,
        ),
        ProviderConfig(
            name="openai",
            api_key=settings.OPENAI_API_KEY,
            organization=settings.OPENAI_ORGANIZATION,
            chat_model=settings.OPENAI_MODEL,
            embedding_model=settings.OPENAI_EMBEDDING_MODEL,
        ),
        ProviderConfig(
            name="gemini",
            api_key=settings.GEMINI_API_KEY,
            chat_model=settings.GEMINI_MODEL,
            embedding_model=settings.GEMINI_EMBEDDING_MODEL,
        ),
    ]


def build_providers(settings: Settings) -> List[ProviderAdapter]:
    """Instantiate one adapter per configured provider."""
    return [ADAPTERS[cfg.name](cfg) for cfg in provider_configs(settings)]
