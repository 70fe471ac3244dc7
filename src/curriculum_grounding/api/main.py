"""FastAPI entrypoint for grounding resolution, traces and metrics."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from curriculum_grounding.cache.backends import (
    CacheBackend,
    InMemoryCacheBackend,
    RedisCacheBackend,
)
from curriculum_grounding.cache.embedding_cache import EmbeddingCache
from curriculum_grounding.config import CacheConfig, RouterConfig, ScraperConfig, SearchConfig
from curriculum_grounding.embedding.embedder import (
    CachedEmbedder,
    EmbeddingProvider,
    HashingEmbeddingProvider,
    LangChainEmbeddingProvider,
)
from curriculum_grounding.errors import QueryValidationError
from curriculum_grounding.obs.tracing import GroundingTraceStore
from curriculum_grounding.retrieval.backends import (
    InMemoryHybridIndex,
    PostgrestHybridSearchBackend,
)
from curriculum_grounding.retrieval.search import HybridSearchBackend, HybridSearchClient
from curriculum_grounding.routing.context import assemble_context
from curriculum_grounding.routing.router import GroundingRouter
from curriculum_grounding.web.scraper import PortalScraper


def _create_embedding_provider() -> EmbeddingProvider:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return HashingEmbeddingProvider()

    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbeddingProvider(
        OpenAIEmbeddings(model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"))
    )


def _create_cache_backend() -> CacheBackend:
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return InMemoryCacheBackend()
    return RedisCacheBackend.from_url(redis_url)


def _create_search_backend() -> HybridSearchBackend:
    rpc_url = os.getenv("SEARCH_RPC_URL")
    if not rpc_url:
        return InMemoryHybridIndex()
    return PostgrestHybridSearchBackend(
        rpc_url,
        os.getenv("SEARCH_API_KEY", ""),
        function=os.getenv("SEARCH_RPC_FUNCTION", "hybrid_search_chunks"),
    )


def build_router(trace_store: GroundingTraceStore | None = None) -> GroundingRouter:
    """Wire the grounding components once, from environment configuration."""

    cache = EmbeddingCache(_create_cache_backend(), CacheConfig())
    return GroundingRouter(
        embedder=CachedEmbedder(_create_embedding_provider(), cache),
        search_client=HybridSearchClient(_create_search_backend(), SearchConfig()),
        scraper=PortalScraper(ScraperConfig()),
        config=RouterConfig(),
        trace_store=trace_store,
    )


async def close_router(router: GroundingRouter) -> None:
    await router.embedder.cache.close()
    close_backend = getattr(router.search_client.backend, "close", None)
    if close_backend is not None:
        await close_backend()
    await router.scraper.close()


class ResolveRequest(BaseModel):
    query: str = Field(min_length=1)
    scope_ids: list[str] | None = None
    explicit_code: str | None = None


def create_app(
    router: GroundingRouter | None = None,
    trace_store: GroundingTraceStore | None = None,
) -> FastAPI:
    traces = trace_store
    if traces is None and router is not None:
        traces = router.trace_store
    if traces is None:
        traces = GroundingTraceStore()
    grounding_router = router if router is not None else build_router(traces)
    grounding_router.trace_store = traces

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await close_router(grounding_router)

    app = FastAPI(title="Curriculum Grounding Service", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "cache": grounding_router.embedder.cache.stats(),
            "search_backend": type(grounding_router.search_client.backend).__name__,
            "portal_resources": [
                resource.url for resource in grounding_router.scraper.config.resources
            ],
            "trace_count": len(traces),
        }

    @app.post("/grounding/resolve")
    async def resolve(request: ResolveRequest) -> dict[str, Any]:
        try:
            result = await grounding_router.resolve(
                request.query,
                scope_ids=request.scope_ids,
                explicit_code=request.explicit_code,
            )
        except QueryValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        context = assemble_context(result)
        return {
            **asdict(result),
            "is_grounded": result.is_grounded,
            "grounding_source": result.grounding_source,
            "context": context.text,
            "citations": context.citations,
        }

    @app.get("/traces")
    def list_traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in traces.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = traces.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return traces.summary()

    return app


app = create_app()
