import json

import httpx
import pytest

from curriculum_grounding.embedding.embedder import HashingEmbeddingProvider
from curriculum_grounding.errors import SearchBackendError
from curriculum_grounding.retrieval.backends import (
    IndexedChunk,
    InMemoryHybridIndex,
    PostgrestHybridSearchBackend,
)
from curriculum_grounding.retrieval.fusion import cosine_similarity
from curriculum_grounding.retrieval.search import HybridSearchClient, HybridSearchRequest


class _StaticBackend:
    def __init__(self, rows: object) -> None:
        self.rows = rows
        self.requests: list[HybridSearchRequest] = []

    async def hybrid_search(self, request: HybridSearchRequest) -> object:
        self.requests.append(request)
        return self.rows


class _FailingBackend:
    async def hybrid_search(self, request: HybridSearchRequest) -> list[dict[str, object]]:
        raise RuntimeError("connection reset by peer")


def _row(chunk_id: str, score: float, document_id: str = "science-8", **extra: object) -> dict:
    return {
        "chunk_id": chunk_id,
        "document_id": document_id,
        "chunk_text": f"text of {chunk_id}",
        "combined_score": score,
        **extra,
    }


def _index() -> InMemoryHybridIndex:
    index = InMemoryHybridIndex()
    index.upsert(
        [
            IndexedChunk(
                chunk_id="sci-001",
                document_id="science-8",
                text="Density is mass per unit volume of a substance.",
                embedding=[1.0, 0.0, 0.0],
                codes=("S08A05",),
            ),
            IndexedChunk(
                chunk_id="sci-002",
                document_id="science-8",
                text="Buoyancy depends on the density of the fluid.",
                embedding=[0.6, 0.8, 0.0],
            ),
            IndexedChunk(
                chunk_id="bio-001",
                document_id="biology-11",
                text="Cells are the basic unit of life.",
                embedding=[0.0, 0.0, 1.0],
            ),
        ]
    )
    return index


@pytest.mark.asyncio
async def test_results_ordered_by_fused_score_with_ranks() -> None:
    client = HybridSearchClient(_index())

    chunks = await client.search("density substance", [1.0, 0.0, 0.0])

    assert [chunk.chunk_id for chunk in chunks] == ["sci-001", "sci-002"]
    assert [chunk.rank for chunk in chunks] == [1, 2]
    assert chunks[0].score >= chunks[1].score
    assert chunks[0].codes == ("S08A05",)


@pytest.mark.asyncio
async def test_scope_restricts_documents() -> None:
    client = HybridSearchClient(_index())

    chunks = await client.search("basic unit of life", [0.0, 0.0, 1.0], ["biology-11"])

    assert [chunk.document_id for chunk in chunks] == ["biology-11"]


@pytest.mark.asyncio
async def test_nothing_above_relevance_floor_is_empty() -> None:
    client = HybridSearchClient(_index())

    chunks = await client.search("photosynthesis", [0.0, -1.0, 0.0])

    assert chunks == []


@pytest.mark.asyncio
async def test_ties_break_on_chunk_id_and_tags_are_canonical() -> None:
    backend = _StaticBackend(
        [
            _row("c-2", 0.5),
            _row("c-1", 0.5, slo_codes=["S-08-A-05", "s8a5"]),
            _row("c-0", 0.9, slo_codes=None),
        ]
    )
    client = HybridSearchClient(backend)

    chunks = await client.search("density", [0.1, 0.2], limit=2)

    assert [chunk.chunk_id for chunk in chunks] == ["c-0", "c-1"]
    assert chunks[1].codes == ("S08A05",)
    assert backend.requests[0].match_count == 2
    assert backend.requests[0].vector_weight == 0.6
    assert backend.requests[0].text_weight == 0.4


@pytest.mark.asyncio
async def test_out_of_scope_rows_are_dropped() -> None:
    backend = _StaticBackend([_row("a", 0.8), _row("b", 0.7, document_id="other")])
    client = HybridSearchClient(backend)

    chunks = await client.search("density", [0.1], ["science-8"])

    assert [chunk.chunk_id for chunk in chunks] == ["a"]


@pytest.mark.asyncio
async def test_backend_failure_is_distinct_from_empty() -> None:
    client = HybridSearchClient(_FailingBackend())

    with pytest.raises(SearchBackendError):
        await client.search("density", [0.1])


@pytest.mark.asyncio
async def test_malformed_rows_raise_backend_error() -> None:
    with pytest.raises(SearchBackendError):
        await HybridSearchClient(_StaticBackend([{"chunk_id": "x"}])).search("density", [0.1])

    with pytest.raises(SearchBackendError):
        await HybridSearchClient(_StaticBackend({"error": "boom"})).search("density", [0.1])


@pytest.mark.asyncio
async def test_postgrest_backend_posts_rpc_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[_row("sci-001", 0.87, slo_codes=["S-08-A-05"])])

    http_client = httpx.AsyncClient(
        base_url="https://db.example", transport=httpx.MockTransport(handler)
    )
    backend = PostgrestHybridSearchBackend("https://db.example", "anon-key", client=http_client)
    client = HybridSearchClient(backend)

    chunks = await client.search("density", [0.1, 0.2], ["science-8"])
    await backend.close()

    assert seen[0].url.path == "/rest/v1/rpc/hybrid_search_chunks"
    payload = json.loads(seen[0].content)
    assert payload["filter_document_ids"] == ["science-8"]
    assert payload["match_count"] == 10
    assert chunks[0].chunk_id == "sci-001"
    assert chunks[0].codes == ("S08A05",)


@pytest.mark.asyncio
async def test_postgrest_http_error_becomes_backend_error() -> None:
    http_client = httpx.AsyncClient(
        base_url="https://db.example",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    backend = PostgrestHybridSearchBackend("https://db.example", "anon-key", client=http_client)

    with pytest.raises(SearchBackendError):
        await HybridSearchClient(backend).search("density", [0.1])


def test_fusion_helpers_handle_degenerate_vectors() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    vector = HashingEmbeddingProvider(dimension=16).embed_sync("Density of water")
    assert sum(component * component for component in vector) == pytest.approx(1.0)
    assert HashingEmbeddingProvider(dimension=16).embed_sync("   ") == [0.0] * 16
