"""Fallback orchestration over provider adapters.

FallbackOrchestrator walks an ordered chain of providers for each call:
- embeddings and chat have independent chain orders
- providers are tried strictly one at a time; the first success is returned
- every attempt is bounded by a timeout; a timeout, error or last-known
  "unavailable" probe result counts as that provider's failure and the walk advances
- an exhausted chain raises ProviderChainExhausted with one reason per provider

Nothing is retried against the same provider within one logical call.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from rag_pipeline.config import Settings
from rag_pipeline.errors import ProviderChainExhausted, ProviderError, ValidationError
from rag_pipeline.obs import span
from rag_pipeline.providers import (
    ChatRequest,
    ChatResponse,
    EmbeddingResponse,
    ProbeResult,
    ProviderAdapter,
    build_providers,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def describe_failure(exc: BaseException) -> str:
    """Short, human-readable failure reason for logs and aggregate errors."""
    msg = str(exc).strip()
    if isinstance(exc, ProviderError):
        # ProviderError already carries "<provider>: " as a prefix
        prefix = f"{exc.provider}: "
        return msg[len(prefix):] if msg.startswith(prefix) else msg
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


class FallbackOrchestrator:
    """Ordered provider chain with per-attempt timeouts.

    Args:
        providers: Adapters keyed by their name.
        embedding_chain: Provider names tried for embed(); defaults to all providers in order.
        chat_chain: Provider names tried for chat(); defaults to all providers in order.
        embed_timeout / chat_timeout / probe_timeout: Upper bound in seconds per attempt.
    """

    def __init__(
        self,
        providers: Sequence[ProviderAdapter],
        embedding_chain: Optional[Sequence[str]] = None,
        chat_chain: Optional[Sequence[str]] = None,
        embed_timeout: float = 30.0,
        chat_timeout: float = 30.0,
        probe_timeout: float = 5.0,
    ):
        self._providers: Dict[str, ProviderAdapter] = {}
        for p in providers:
            if p.name in self._providers:
                raise ValidationError(f"duplicate provider name {p.name!r}")
            self._providers[p.name] = p
        names = [p.name for p in providers]
        self.embedding_chain = self._check_chain("embedding", embedding_chain or names)
        self.chat_chain = self._check_chain("chat", chat_chain or names)
        for label, value in (("embed", embed_timeout), ("chat", chat_timeout), ("probe", probe_timeout)):
            if value <= 0:
                raise ValidationError(f"{label} timeout must be positive")
        self.embed_timeout = embed_timeout
        self.chat_timeout = chat_timeout
        self.probe_timeout = probe_timeout
        self._status: Dict[str, ProbeResult] = {}
        self._status_lock = threading.Lock()
        self._inflight: Set[ThreadPoolExecutor] = set()
        self._inflight_lock = threading.Lock()

    def _check_chain(self, label: str, chain: Sequence[str]) -> List[str]:
        chain = list(chain)
        if not chain:
            raise ValidationError(f"{label} chain is empty")
        unknown = [n for n in chain if n not in self._providers]
        if unknown:
            raise ValidationError(f"{label} chain references unknown providers: {', '.join(unknown)}")
        if len(set(chain)) != len(chain):
            raise ValidationError(f"{label} chain lists a provider more than once")
        return chain

    @property
    def providers(self) -> List[ProviderAdapter]:
        return list(self._providers.values())

    def _bounded(self, fn: Callable[[], T], timeout: float) -> T:
        """Run fn on its own worker thread and wait at most timeout seconds once it has started.

        Each attempt gets a dedicated single-worker executor, so concurrent callers never
        queue behind each other and an abandoned hung call cannot starve later attempts.
        """
        started = threading.Event()

        def attempt() -> T:
            started.set()
            return fn()

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="provider-call")
        with self._inflight_lock:
            self._inflight.add(executor)
        try:
            future = executor.submit(attempt)
            started.wait()
            return future.result(timeout=timeout)
        except FutureTimeout:
            raise TimeoutError(f"no response within {timeout:g}s") from None
        finally:
            with self._inflight_lock:
                self._inflight.discard(executor)
            executor.shutdown(wait=False)

    # Health

    def probe(self, name: str) -> ProbeResult:
        """Probe one provider within probe_timeout and remember the result."""
        provider = self._providers[name]
        try:
            result = self._bounded(lambda: provider.probe(self.probe_timeout), self.probe_timeout)
        except TimeoutError as exc:
            result = ProbeResult(provider_name=name, available=False, error=str(exc))
        with self._status_lock:
            self._status[name] = result
        return result

    def probe_all(self) -> List[ProbeResult]:
        """Probe every provider, one after another, and return their statuses."""
        results = [self.probe(name) for name in self._providers]
        available = [r.provider_name for r in results if r.available]
        logger.info("Provider probe: available=%s", available or "none")
        return results

    def status(self) -> List[ProbeResult]:
        """Last known probe result per provider (never-probed providers report unknown)."""
        with self._status_lock:
            out = []
            for name in self._providers:
                known = self._status.get(name)
                out.append(known or ProbeResult(provider_name=name, available=False, error="not probed"))
            return out

    def forget_status(self) -> None:
        with self._status_lock:
            self._status.clear()

    # Calls

    def _run(
        self,
        operation: str,
        chain: Sequence[str],
        timeout: float,
        call: Callable[[ProviderAdapter], T],
    ) -> T:
        failures: List[Tuple[str, str]] = []
        for name in chain:
            provider = self._providers[name]
            with self._status_lock:
                known = self._status.get(name)
            if known is not None and not known.available:
                reason = f"unavailable: {known.error or 'probe failed'}"
                failures.append((name, reason))
                logger.warning("%s via %s skipped (%s)", operation, name, reason)
                continue
            try:
                with span(f"provider.{operation}", {"provider": name}):
                    result = self._bounded(lambda: call(provider), timeout)
            except Exception as exc:
                reason = describe_failure(exc)
                failures.append((name, reason))
                logger.warning("%s via %s failed: %s", operation, name, reason)
                continue
            logger.info("%s served by %s", operation, name)
            return result
        raise ProviderChainExhausted(operation, failures)

    def embed(self, texts: Sequence[str]) -> EmbeddingResponse:
        """Embed texts as one batch with the first provider in the embedding chain that succeeds.

        A provider that returns a different number of vectors than inputs, or vectors
        of unequal width, has violated the protocol and counts as failed.
        """
        texts = list(texts)
        if not texts:
            raise ValidationError("nothing to embed")

        def call(provider: ProviderAdapter) -> EmbeddingResponse:
            resp = provider.embed(texts, self.embed_timeout)
            if len(resp.vectors) != len(texts):
                raise ProviderError(
                    provider.name,
                    f"protocol violation: {len(resp.vectors)} vectors for {len(texts)} inputs",
                )
            widths = {len(v) for v in resp.vectors}
            if len(widths) != 1 or 0 in widths:
                raise ProviderError(provider.name, f"protocol violation: vector widths {sorted(widths)}")
            resp.provider = provider.name
            return resp

        return self._run("embed", self.embedding_chain, self.embed_timeout, call)

    def chat(self, request: ChatRequest) -> ChatResponse:
        """Complete request with the first provider in the chat chain that succeeds."""

        def call(provider: ProviderAdapter) -> ChatResponse:
            resp = provider.chat(request, self.chat_timeout)
            resp.provider = provider.name
            return resp

        return self._run("chat", self.chat_chain, self.chat_timeout, call)

    def close(self) -> None:
        """Stop waiting on in-flight attempts; their worker threads finish on their own."""
        with self._inflight_lock:
            pending = list(self._inflight)
            self._inflight.clear()
        for executor in pending:
            executor.shutdown(wait=False)


def build_orchestrator(settings: Settings) -> FallbackOrchestrator:
    """Factory wiring provider adapters and chain orders from an explicit Settings object."""
    return FallbackOrchestrator(
        build_providers(settings),
        embedding_chain=settings.EMBEDDING_CHAIN_ORDER,
        chat_chain=settings.CHAT_CHAIN_ORDER,
        embed_timeout=settings.EMBED_TIMEOUT_SECONDS,
        chat_timeout=settings.CHAT_TIMEOUT_SECONDS,
        probe_timeout=settings.PROBE_TIMEOUT_SECONDS,
    )
