"""Memoized query embeddings.

The same copy is often resubmitted after a dictionary edit has dropped its
cached candidates; reusing the embedding saves a provider call. Only
successful embeddings are stored.
"""

from typing import Protocol

from adlex.services.similarity.cache import TTLCache, embedding_key
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Embedder(Protocol):
    async def create_embedding(self, text: str) -> list[float]: ...


class CachedEmbedder:
    def __init__(self, embedder: Embedder, cache: TTLCache[list[float]], ttl: float = 900.0):
        self.embedder = embedder
        self.cache = cache
        self.ttl = ttl

    async def create_embedding(self, text: str) -> list[float]:
        key = embedding_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            LOGGER.debug("Embedding cache hit")
            return cached

        vector = await self.embedder.create_embedding(text)
        self.cache.set(key, vector, ttl=self.ttl)
        return vector
