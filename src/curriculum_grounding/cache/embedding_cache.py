"""Persistent embedding cache keyed by normalized query text."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from collections.abc import Callable

from curriculum_grounding.cache.backends import CacheBackend
from curriculum_grounding.config import CacheConfig

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_cache_key(text: str, prefix: str = "v_cache:") -> str:
    """Derive the cache key for `text`.

    Texts that differ only in case or whitespace share a key.
    """

    clean = _WHITESPACE.sub(" ", text.lower()).strip()
    digest = hashlib.sha256(clean.encode("utf-8")).hexdigest()
    return f"{prefix}{digest}"


class EmbeddingCache:
    """TTL cache of query vectors in front of an injected backend.

    The cache is a performance optimization only: every backend failure is
    logged and turned into a miss (on read) or a no-op (on write).
    """

    def __init__(
        self,
        backend: CacheBackend,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.config = config or CacheConfig()
        self._clock = clock

    def key_for(self, text: str) -> str:
        return normalize_cache_key(text, self.config.key_prefix)

    async def get(self, text: str) -> list[float] | None:
        key = self.key_for(text)
        try:
            raw = await self.backend.get(key)
        except Exception as exc:
            logger.warning("Embedding cache read failed, treating as miss: %s", exc)
            return None
        if raw is None:
            return None

        try:
            payload = json.loads(raw)
            vector = [float(value) for value in payload["vector"]]
            stored_at = float(payload["stored_at"])
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Discarding corrupt embedding cache entry %s: %s", key, exc)
            return None

        if self._clock() - stored_at >= self.config.ttl_seconds:
            return None
        logger.debug("Embedding cache hit for %s", key)
        return vector

    async def set(self, text: str, vector: list[float]) -> None:
        key = self.key_for(text)
        payload = json.dumps({"vector": list(vector), "stored_at": self._clock()})
        try:
            await self.backend.set(key, payload, self.config.ttl_seconds)
        except Exception as exc:
            logger.warning("Embedding cache write failed for %s: %s", key, exc)

    async def close(self) -> None:
        try:
            await self.backend.close()
        except Exception as exc:
            logger.warning("Embedding cache backend did not close cleanly: %s", exc)

    def stats(self) -> dict[str, object]:
        return {
            "backend": type(self.backend).__name__,
            "ttl_seconds": self.config.ttl_seconds,
        }
