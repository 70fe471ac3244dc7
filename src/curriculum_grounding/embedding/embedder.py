"""Embedding providers and the cache-aware query embedder."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings

from curriculum_grounding.cache.embedding_cache import EmbeddingCache
from curriculum_grounding.errors import EmbeddingError

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F-\u009F]")
_WHITESPACE = re.compile(r"\s+")


class EmbeddingProvider(ABC):
    """Provider interface for query vectors."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic sparse-like embedding without external model calls.

    Used for local development and tests. In production, wrap a hosted model
    with `LangChainEmbeddingProvider`.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> list[float]:
        """Signed feature hashing of whitespace tokens, L2-normalized."""

        vector = [0.0] * self.dimension
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimension
            vector[bucket] += -1.0 if digest[4] & 1 else 1.0

        length = sqrt(sum(component * component for component in vector))
        return [component / length for component in vector] if length else vector


class LangChainEmbeddingProvider(EmbeddingProvider):
    """Adapter over any `langchain_core.embeddings.Embeddings` implementation."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    async def embed(self, text: str) -> list[float]:
        vector = await self._embeddings.aembed_query(text)
        return [float(value) for value in vector]


class CachedEmbedder:
    """Embeds queries through the persistent cache, calling the provider on a miss."""

    def __init__(self, provider: EmbeddingProvider, cache: EmbeddingCache) -> None:
        self.provider = provider
        self.cache = cache

    async def embed(self, text: str) -> list[float]:
        clean = sanitize_text(text)
        cached = await self.cache.get(clean)
        if cached is not None:
            return cached

        logger.debug("Embedding cache miss, calling %s", type(self.provider).__name__)
        try:
            vector = await self.provider.embed(clean)
        except Exception as exc:
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc
        if not vector:
            raise EmbeddingError("Embedding provider returned an empty vector")

        await self.cache.set(clean, vector)
        return vector


def sanitize_text(text: str) -> str:
    cleaned = _CONTROL_CHARS.sub(" ", text or "")
    return _WHITESPACE.sub(" ", cleaned).strip()
