"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

GroundingSource = Literal["local", "web", "mixed", "none"]
FragmentKind = Literal["table_row", "link", "content", "pdf_excerpt"]
SourceStatus = Literal["ok", "empty", "error", "timeout", "skipped"]


@dataclass(slots=True)
class Query:
    """A validated grounding request."""

    text: str
    scope_ids: tuple[str, ...] | None = None
    explicit_code: str | None = None


@dataclass(slots=True)
class RetrievedChunk:
    """A ranked chunk returned by hybrid search."""

    chunk_id: str
    document_id: str
    text: str
    score: float
    rank: int = 0
    codes: tuple[str, ...] = ()
    section_title: str | None = None
    page_number: int | None = None


@dataclass(slots=True)
class ScrapedFragment:
    """A matched fragment of a portal resource, tagged with its structural class."""

    kind: FragmentKind
    text: str
    url: str


@dataclass(slots=True)
class ScrapedPassage:
    """Query-relevant text extracted live from the external portal."""

    authority: str
    source_url: str
    text: str
    title: str
    fragments: list[ScrapedFragment] = field(default_factory=list)


@dataclass(slots=True)
class SourceTrace:
    """Outcome of consulting one source during a resolution."""

    source: str
    status: SourceStatus
    latency_ms: float = 0.0
    detail: str = ""


@dataclass(slots=True)
class GroundingResult:
    """Grounding verdict with provenance.

    `is_grounded` and `grounding_source` are derived from the evidence fields
    so they always agree with what was actually found. `confidence` is the
    local retrieval confidence (1.0 for an exact code match).
    """

    local_chunks: list[RetrievedChunk] = field(default_factory=list)
    external_passage: ScrapedPassage | None = None
    confidence: float = 0.0
    detected_code: str | None = None
    source_traces: list[SourceTrace] = field(default_factory=list)
    trace_id: str | None = None

    @property
    def grounding_source(self) -> GroundingSource:
        has_local = bool(self.local_chunks)
        has_web = self.external_passage is not None
        if has_local and has_web:
            return "mixed"
        if has_local:
            return "local"
        if has_web:
            return "web"
        return "none"

    @property
    def is_grounded(self) -> bool:
        return self.grounding_source != "none"
