"""Hybrid search client with typed request/response boundaries."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from curriculum_grounding.config import SearchConfig
from curriculum_grounding.errors import SearchBackendError
from curriculum_grounding.recognition.codes import normalize_code
from curriculum_grounding.types import RetrievedChunk

logger = logging.getLogger(__name__)


class HybridSearchRequest(BaseModel):
    """Parameters sent to the ranked-retrieval oracle."""

    query_text: str = Field(min_length=1)
    query_embedding: list[float]
    match_count: int = Field(ge=1)
    scope_ids: list[str] | None = None
    vector_weight: float = Field(ge=0.0, le=1.0)
    text_weight: float = Field(ge=0.0, le=1.0)

    def to_rpc_payload(self) -> dict[str, Any]:
        return {
            "query_text": self.query_text,
            "query_embedding": self.query_embedding,
            "match_count": self.match_count,
            "filter_document_ids": self.scope_ids,
            "vector_weight": self.vector_weight,
            "text_weight": self.text_weight,
        }


class SearchRow(BaseModel):
    """One ranked row as returned by the hybrid search backend."""

    model_config = ConfigDict(extra="ignore")

    chunk_id: str
    document_id: str
    chunk_text: str
    combined_score: float
    slo_codes: list[str] = Field(default_factory=list)
    section_title: str | None = None
    page_number: int | None = None

    @field_validator("chunk_id", "document_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        # UUID and integer primary keys arrive untyped from the RPC layer.
        if value is not None and not isinstance(value, str):
            return str(value)
        return value

    @field_validator("slo_codes", mode="before")
    @classmethod
    def _null_codes(cls, value: Any) -> Any:
        return [] if value is None else value


class HybridSearchBackend(Protocol):
    """Ranked-retrieval oracle contract."""

    async def hybrid_search(self, request: HybridSearchRequest) -> list[dict[str, Any]]:
        """Return ranked rows with a combined score."""


class HybridSearchClient:
    """Runs hybrid search and converts backend rows into `RetrievedChunk`s.

    An empty list means nothing cleared the index's relevance floor. Any
    transport failure or malformed row raises `SearchBackendError` instead.
    """

    def __init__(
        self,
        backend: HybridSearchBackend,
        config: SearchConfig | None = None,
    ) -> None:
        self.backend = backend
        self.config = config or SearchConfig()

    async def search(
        self,
        query_text: str,
        embedding: list[float],
        scope_ids: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[RetrievedChunk]:
        request = HybridSearchRequest(
            query_text=query_text,
            query_embedding=embedding,
            match_count=limit or self.config.match_count,
            scope_ids=list(scope_ids) if scope_ids is not None else None,
            vector_weight=self.config.vector_weight,
            text_weight=self.config.lexical_weight,
        )

        try:
            raw_rows = await self.backend.hybrid_search(request)
        except SearchBackendError:
            raise
        except Exception as exc:
            raise SearchBackendError(f"Hybrid search backend failed: {exc}") from exc

        if not isinstance(raw_rows, list):
            raise SearchBackendError(
                f"Hybrid search backend returned {type(raw_rows).__name__}, expected list"
            )
        try:
            rows = [SearchRow.model_validate(row) for row in raw_rows]
        except ValidationError as exc:
            raise SearchBackendError(f"Malformed hybrid search row: {exc}") from exc

        if request.scope_ids is not None:
            allowed = set(request.scope_ids)
            in_scope = [row for row in rows if row.document_id in allowed]
            if len(in_scope) != len(rows):
                logger.warning(
                    "Dropped %d out-of-scope rows from search backend", len(rows) - len(in_scope)
                )
            rows = in_scope

        ranked = sorted(rows, key=lambda row: (-row.combined_score, row.chunk_id))
        return [
            RetrievedChunk(
                chunk_id=row.chunk_id,
                document_id=row.document_id,
                text=row.chunk_text,
                score=row.combined_score,
                rank=i + 1,
                codes=tuple(_canonical_tags(row.slo_codes)),
                section_title=row.section_title,
                page_number=row.page_number,
            )
            for i, row in enumerate(ranked[: request.match_count])
        ]


def _canonical_tags(tags: list[str]) -> list[str]:
    canonical: list[str] = []
    for tag in tags:
        code = normalize_code(tag) or tag.strip().upper()
        if code and code not in canonical:
            canonical.append(code)
    return canonical
