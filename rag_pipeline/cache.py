"""Query-embedding cache using Redis.

Provides:
- EmbeddingCache: get/set of query vectors keyed by normalized query text and the
  embedding chain, stored as JSON with a TTL.
- EmbeddingCache.from_url: build a cache from REDIS_URL, or None when it is empty.

Entries keep the provider and model that produced the vector so dimensionality checks
still apply to cached vectors. Redis errors are logged and treated as a cache miss.
"""
import hashlib
import json
import logging
from typing import Optional, Sequence

import redis

from rag_pipeline.providers import EmbeddingResponse

logger = logging.getLogger(__name__)


class EmbeddingCache:
    def __init__(self, client: "redis.Redis", ttl_seconds: int = 3600, namespace: str = "rag:qvec:v1"):
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 3600) -> Optional["EmbeddingCache"]:
        if not url:
            return None
        return cls(redis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    def key_for(self, text: str, chain: Sequence[str]) -> str:
        """Stable cache key for a query under a given embedding chain."""
        norm_q = " ".join(text.strip().lower().split())
        h = hashlib.sha256(f"{norm_q}|chain={','.join(chain)}".encode("utf-8")).hexdigest()
        return f"{self.namespace}:{h}"

    def get(self, text: str, chain: Sequence[str]) -> Optional[EmbeddingResponse]:
        try:
            raw = self._client.get(self.key_for(text, chain))
        except redis.RedisError as exc:
            logger.warning("Embedding cache read failed: %s", exc)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return EmbeddingResponse(
                vectors=[list(map(float, data["vector"]))],
                model=data["model"],
                provider=data["provider"],
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed embedding cache entry")
            return None

    def set(self, text: str, chain: Sequence[str], response: EmbeddingResponse) -> None:
        payload = {
            "vector": list(map(float, response.vectors[0])),
            "model": response.model,
            "provider": response.provider,
        }
        try:
            self._client.setex(self.key_for(text, chain), self.ttl_seconds, json.dumps(payload))
        except redis.RedisError as exc:
            logger.warning("Embedding cache write failed: %s", exc)
