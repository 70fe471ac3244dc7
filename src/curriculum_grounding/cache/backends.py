"""Key-value backends for the embedding cache."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol

import redis.asyncio as aioredis


class CacheBackend(Protocol):
    """Atomic single-key string store with per-key expiry."""

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None when absent or expired."""

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store `value` under `key`, overwriting, expiring after `ttl_seconds`."""

    async def close(self) -> None:
        """Release connections held by the backend."""


class InMemoryCacheBackend:
    """Process-local backend used for tests and offline development."""

    def __init__(
        self,
        *,
        max_entries: int = 2_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._max_entries = max_entries
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (value, self._clock() + ttl_seconds)
        # Evict oldest insertions first.
        while len(self._entries) > self._max_entries:
            del self._entries[next(iter(self._entries))]

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend:
    """Redis-backed store; `GET` and `SET ... EX` are atomic per key."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def close(self) -> None:
        await self._client.aclose()
