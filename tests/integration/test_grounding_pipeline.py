import httpx
import pytest

from curriculum_grounding.cache.backends import InMemoryCacheBackend
from curriculum_grounding.cache.embedding_cache import EmbeddingCache
from curriculum_grounding.config import PortalResource, ScraperConfig
from curriculum_grounding.embedding.embedder import CachedEmbedder, HashingEmbeddingProvider
from curriculum_grounding.obs.tracing import GroundingTraceStore
from curriculum_grounding.retrieval.backends import IndexedChunk, InMemoryHybridIndex
from curriculum_grounding.retrieval.search import HybridSearchClient
from curriculum_grounding.routing.context import NO_VERIFIED_CONTEXT, assemble_context
from curriculum_grounding.routing.router import GroundingRouter
from curriculum_grounding.web.scraper import PortalScraper

PORTAL_URL = "https://portal.example/curriculum.html"

PORTAL_HTML = """
<html>
  <head><title>Sindh Curriculum</title></head>
  <body>
    <nav><a href="/">Home</a></nav>
    <table>
      <tr><th>Code</th><th>Student Learning Objective</th></tr>
      <tr>
        <td>B-11-B-27</td>
        <td>Describe the structure of the cell membrane using the fluid mosaic model.</td>
      </tr>
    </table>
  </body>
</html>
"""


def _build(calls: list[str]) -> tuple[GroundingRouter, InMemoryCacheBackend]:
    provider = HashingEmbeddingProvider()
    index = InMemoryHybridIndex()
    index.upsert(
        [
            IndexedChunk(
                chunk_id="sci8-0004",
                document_id="science-grade-8",
                text="S8A5: Students describe density as mass per unit volume.",
                embedding=provider.embed_sync(
                    "S8A5: Students describe density as mass per unit volume."
                ),
                codes=("S-08-A-05",),
                section_title="Matter",
                page_number=12,
            ),
            IndexedChunk(
                chunk_id="sci8-0005",
                document_id="science-grade-8",
                text="Objects with lower density than water float on it.",
                embedding=provider.embed_sync(
                    "Objects with lower density than water float on it."
                ),
            ),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(200, text=PORTAL_HTML)

    backend = InMemoryCacheBackend()
    scraper = PortalScraper(
        ScraperConfig(resources=[PortalResource(url=PORTAL_URL, kind="html")]),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    router = GroundingRouter(
        embedder=CachedEmbedder(provider, EmbeddingCache(backend)),
        search_client=HybridSearchClient(index),
        scraper=scraper,
        trace_store=GroundingTraceStore(),
    )
    return router, backend


@pytest.mark.asyncio
async def test_local_short_circuit_then_web_fallback_then_none() -> None:
    calls: list[str] = []
    router, cache_backend = _build(calls)

    local = await router.resolve("What does S8A5 say about density?")
    assert local.grounding_source == "local"
    assert local.local_chunks[0].chunk_id == "sci8-0004"
    assert local.local_chunks[0].codes == ("S08A05",)
    assert calls == []

    web = await router.resolve("Explain B-11-B-27")
    assert web.detected_code == "B11B27"
    assert web.grounding_source in {"web", "mixed"}
    assert web.external_passage is not None
    assert web.external_passage.source_url == PORTAL_URL
    assert "fluid mosaic model" in web.external_passage.text
    assert calls == [PORTAL_URL]

    none = await router.resolve("photosynthesis in desert plants")
    assert none.grounding_source == "none"
    assert assemble_context(none).text == NO_VERIFIED_CONTEXT
    assert len(calls) == 1

    assert len(cache_backend) == 3
    metrics = router.trace_store.summary()
    assert metrics["total_requests"] == 3
    assert metrics["none"] == 1

    await router.scraper.close()


@pytest.mark.asyncio
async def test_repeated_query_reuses_cached_embedding() -> None:
    router, cache_backend = _build([])

    await router.resolve("What does S8A5 say about density?")
    await router.resolve("what does  s8a5 say about DENSITY?")

    assert len(cache_backend) == 1
