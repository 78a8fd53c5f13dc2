"""Error taxonomy for the RAG core.

Every error raised on purpose by this package derives from RagError so callers
(HTTP handlers, CLI jobs) can map them without catching unrelated exceptions.
"""
from typing import List, Optional, Sequence, Tuple


class RagError(Exception):
    """Base class for errors raised by the RAG core."""


class ValidationError(RagError):
    """Malformed input: missing field, non-positive top_k, overlap >= size, ..."""


class NotFound(RagError):
    """A referenced collection, document, session or message does not exist."""

    def __init__(self, kind: str, ident: object):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} {ident} not found")


class SessionInactive(RagError):
    """Chat attempted on a deactivated session."""

    def __init__(self, session_id: object):
        self.session_id = session_id
        super().__init__(f"session {session_id} is inactive")


class StorageFailure(RagError):
    """Opaque passthrough of a storage-layer failure."""


class ProviderError(RagError):
    """A single provider adapter failed to serve a call."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderChainExhausted(RagError):
    """Every provider in a fallback chain failed.

    Attributes:
        operation: "embed" or "chat".
        failures: (provider_name, reason) pairs in chain order, one per provider.
    """

    def __init__(self, operation: str, failures: Sequence[Tuple[str, str]]):
        self.operation = operation
        self.failures: List[Tuple[str, str]] = list(failures)
        detail = "; ".join(f"{name}: {reason}" for name, reason in self.failures) or "no providers configured"
        super().__init__(f"all {operation} providers failed: {detail}")

    def reasons(self) -> List[dict]:
        return [{"provider": name, "reason": reason} for name, reason in self.failures]


class EmbeddingDimensionMismatch(RagError):
    """Query vector width differs from the stored chunk vectors of a collection."""

    def __init__(self, query_dim: int, stored_dims: Sequence[int], provider: Optional[str] = None):
        self.query_dim = query_dim
        self.stored_dims = sorted(set(stored_dims))
        self.provider = provider
        via = f" (query embedded by {provider})" if provider else ""
        super().__init__(
            f"query embedding has {query_dim} dimensions but collection chunks have {self.stored_dims}{via}"
        )


class EmbeddingModelMismatch(RagError):
    """Query vector was produced by a different provider or model than the collection's chunks."""

    def __init__(self, query_provider: str, query_model: str, stored: Sequence[Tuple[str, str]]):
        self.query_provider = query_provider
        self.query_model = query_model
        self.stored = sorted(set(stored))
        stored_desc = ", ".join(f"{p}/{m}" for p, m in self.stored)
        super().__init__(
            f"query embedded by {query_provider}/{query_model} but collection chunks were embedded by {stored_desc}"
        )

    def stored_models(self) -> List[dict]:
        return [{"provider": p, "model": m} for p, m in self.stored]
