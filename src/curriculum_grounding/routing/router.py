"""Grounding router: decides which evidence sources back an answer."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

from curriculum_grounding.config import RouterConfig
from curriculum_grounding.embedding.embedder import CachedEmbedder
from curriculum_grounding.errors import (
    EmbeddingError,
    QueryValidationError,
    SearchBackendError,
)
from curriculum_grounding.obs.tracing import GroundingTraceStore, Timer
from curriculum_grounding.recognition.codes import extract_codes, normalize_code
from curriculum_grounding.retrieval.search import HybridSearchClient
from curriculum_grounding.types import (
    GroundingResult,
    Query,
    RetrievedChunk,
    ScrapedPassage,
    SourceTrace,
)
from curriculum_grounding.web.scraper import PortalScraper

logger = logging.getLogger(__name__)


class GroundingRouter:
    """Local-first, confidence-gated grounding policy.

    Resolution order:
    1. Recognize a standard code (explicit code wins over one found in text).
    2. Embed the query through the cache and run hybrid search.
    3. A local chunk carrying the exact code short-circuits with confidence 1.0.
    4. Otherwise local results are accepted when the best fused score meets
       `confidence_floor`.
    5. Below the floor, and only when a code is known, the portal is scraped.
       Sub-floor chunks accompany a found passage as supplementary context
       and are dropped when the portal has nothing.

    A failing source counts as empty. Only malformed input raises.
    """

    def __init__(
        self,
        *,
        embedder: CachedEmbedder,
        search_client: HybridSearchClient,
        scraper: PortalScraper,
        config: RouterConfig | None = None,
        trace_store: GroundingTraceStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.embedder = embedder
        self.search_client = search_client
        self.scraper = scraper
        self.config = config or RouterConfig()
        self.trace_store = trace_store
        self._clock = clock

    async def resolve(
        self,
        query: str,
        scope_ids: Sequence[str] | None = None,
        explicit_code: str | None = None,
    ) -> GroundingResult:
        request = validate_query(query, scope_ids, explicit_code)
        with Timer() as timer:
            result = await self._resolve(request)
        logger.info(
            "Resolved grounding source=%s code=%s confidence=%.2f in %.0fms",
            result.grounding_source,
            result.detected_code,
            result.confidence,
            timer.elapsed_ms,
        )
        if self.trace_store is not None:
            record = self.trace_store.create_record(
                query=request.text, result=result, latency_ms=timer.elapsed_ms
            )
            result.trace_id = record.trace_id
        return result

    async def _resolve(self, request: Query) -> GroundingResult:
        deadline = self._clock() + self.config.time_budget_seconds
        codes = extract_codes(request.text)
        code = request.explicit_code or (codes[0] if codes else None)
        traces: list[SourceTrace] = []

        chunks = await self._search_local(request, deadline, traces)

        if code is not None:
            exact = [chunk for chunk in chunks if chunk_has_code(chunk, code)]
            if exact:
                traces.append(
                    SourceTrace(source="web", status="skipped", detail=f"exact local match for {code}")
                )
                return GroundingResult(
                    local_chunks=exact,
                    confidence=1.0,
                    detected_code=code,
                    source_traces=traces,
                )

        best = max((chunk.score for chunk in chunks), default=0.0)
        if chunks and best >= self.config.confidence_floor:
            traces.append(
                SourceTrace(source="web", status="skipped", detail=f"local confidence {best:.2f}")
            )
            return GroundingResult(
                local_chunks=chunks,
                confidence=best,
                detected_code=code,
                source_traces=traces,
            )

        if code is None:
            traces.append(
                SourceTrace(source="web", status="skipped", detail="no standard code detected")
            )
            return GroundingResult(confidence=best, source_traces=traces)

        passage = await self._scrape(code, deadline, traces)
        return GroundingResult(
            local_chunks=chunks if passage is not None else [],
            external_passage=passage,
            confidence=best,
            detected_code=code,
            source_traces=traces,
        )

    async def _search_local(
        self, request: Query, deadline: float, traces: list[SourceTrace]
    ) -> list[RetrievedChunk]:
        if request.scope_ids == ():
            traces.append(SourceTrace(source="local", status="skipped", detail="empty scope"))
            return []

        remaining = deadline - self._clock()
        chunks: list[RetrievedChunk] = []
        detail = ""
        with Timer() as timer:
            try:
                chunks = await asyncio.wait_for(self._embed_and_search(request), timeout=remaining)
            except asyncio.TimeoutError:
                status, detail = "timeout", f"exceeded {remaining:.1f}s budget"
            except (EmbeddingError, SearchBackendError) as exc:
                logger.warning("Local search unavailable, treating as empty: %s", exc)
                status, detail = "error", str(exc)
            else:
                status = "ok" if chunks else "empty"
        traces.append(
            SourceTrace(source="local", status=status, latency_ms=timer.elapsed_ms, detail=detail)
        )
        return chunks

    async def _embed_and_search(self, request: Query) -> list[RetrievedChunk]:
        embedding = await self.embedder.embed(request.text)
        return await self.search_client.search(
            request.text, embedding, request.scope_ids, self.config.search_limit
        )

    async def _scrape(
        self, code: str, deadline: float, traces: list[SourceTrace]
    ) -> ScrapedPassage | None:
        remaining = deadline - self._clock()
        if remaining <= 0:
            traces.append(SourceTrace(source="web", status="timeout", detail="budget exhausted"))
            return None

        passage: ScrapedPassage | None = None
        detail = ""
        with Timer() as timer:
            try:
                passage = await asyncio.wait_for(self.scraper.scrape(code), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning("Portal scrape for %s exceeded the remaining budget", code)
                status, detail = "timeout", f"exceeded {remaining:.1f}s budget"
            except Exception as exc:
                logger.warning("Portal scrape for %s failed: %s", code, exc, exc_info=True)
                status, detail = "error", str(exc)
            else:
                status = "ok" if passage is not None else "empty"
        traces.append(
            SourceTrace(source="web", status=status, latency_ms=timer.elapsed_ms, detail=detail)
        )
        return passage


def validate_query(
    query: str,
    scope_ids: Sequence[str] | None = None,
    explicit_code: str | None = None,
) -> Query:
    """Validate raw input into a `Query` or raise `QueryValidationError`."""

    if not isinstance(query, str) or not query.strip():
        raise QueryValidationError("query must be a non-empty string")

    scope: tuple[str, ...] | None = None
    if scope_ids is not None:
        if isinstance(scope_ids, str):
            raise QueryValidationError("scope_ids must be a collection of document ids")
        cleaned: list[str] = []
        for scope_id in scope_ids:
            if not isinstance(scope_id, str) or not scope_id.strip():
                raise QueryValidationError(f"invalid document id in scope: {scope_id!r}")
            cleaned.append(scope_id.strip())
        scope = tuple(dict.fromkeys(cleaned))

    code: str | None = None
    if explicit_code is not None:
        code = normalize_code(explicit_code)
        if code is None:
            raise QueryValidationError(f"unrecognized standard code: {explicit_code!r}")

    return Query(text=" ".join(query.split()), scope_ids=scope, explicit_code=code)


def chunk_has_code(chunk: RetrievedChunk, code: str) -> bool:
    """True when the chunk is tagged with `code` or names it in its text."""
    return code in chunk.codes or code in extract_codes(chunk.text)


async def resolve_grounding(
    router: GroundingRouter,
    query: str,
    scope_ids: Sequence[str] | None = None,
    explicit_code: str | None = None,
) -> GroundingResult:
    """Entry point for the answer-synthesis layer."""
    return await router.resolve(query, scope_ids=scope_ids, explicit_code=explicit_code)
