"""Hybrid search backend adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from curriculum_grounding.errors import SearchBackendError
from curriculum_grounding.retrieval.fusion import (
    WeightedFusion,
    cosine_similarity,
    lexical_overlap,
)
from curriculum_grounding.retrieval.search import HybridSearchRequest


@dataclass(slots=True)
class IndexedChunk:
    """A chunk stored in the in-memory index together with its vector."""

    chunk_id: str
    document_id: str
    text: str
    embedding: list[float]
    codes: tuple[str, ...] = ()
    section_title: str | None = None
    page_number: int | None = None


class InMemoryHybridIndex:
    """Deterministic hybrid index used for tests and local prototyping.

    Scores every in-scope chunk with cosine similarity and query-token
    overlap, fuses them with the request weights and drops rows below the
    relevance floor.
    """

    def __init__(self, *, relevance_floor: float = 0.05) -> None:
        self.relevance_floor = relevance_floor
        self._store: dict[str, IndexedChunk] = {}

    def upsert(self, chunks: list[IndexedChunk]) -> None:
        for chunk in chunks:
            self._store[chunk.chunk_id] = chunk

    def __len__(self) -> int:
        return len(self._store)

    async def hybrid_search(self, request: HybridSearchRequest) -> list[dict[str, Any]]:
        fusion = WeightedFusion(request.vector_weight, request.text_weight)
        scope = set(request.scope_ids) if request.scope_ids is not None else None

        rows: list[dict[str, Any]] = []
        for record in self._store.values():
            if scope is not None and record.document_id not in scope:
                continue
            score = fusion.combine(
                cosine_similarity(request.query_embedding, record.embedding),
                lexical_overlap(request.query_text, record.text),
            )
            if score < self.relevance_floor:
                continue
            rows.append(
                {
                    "chunk_id": record.chunk_id,
                    "document_id": record.document_id,
                    "chunk_text": record.text,
                    "combined_score": score,
                    "slo_codes": list(record.codes),
                    "section_title": record.section_title,
                    "page_number": record.page_number,
                }
            )

        rows.sort(key=lambda row: (-row["combined_score"], row["chunk_id"]))
        return rows[: request.match_count]


class PostgrestHybridSearchBackend:
    """Calls the hybrid search stored procedure through PostgREST RPC."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        function: str = "hybrid_search_chunks",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.function = function
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    async def hybrid_search(self, request: HybridSearchRequest) -> list[dict[str, Any]]:
        response = await self._client.post(
            f"/rest/v1/rpc/{self.function}", json=request.to_rpc_payload()
        )
        response.raise_for_status()
        payload = response.json()
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise SearchBackendError(f"Unexpected RPC payload: {str(payload)[:200]}")
        return payload

    async def close(self) -> None:
        await self._client.aclose()
