"""Resolution tracing and summary metrics."""

from __future__ import annotations

import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from curriculum_grounding.types import GroundingResult, GroundingSource, SourceTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    query: str
    detected_code: str | None
    grounding_source: GroundingSource
    is_grounded: bool
    confidence: float
    local_chunk_ids: list[str]
    external_url: str | None
    source_traces: list[SourceTrace]
    latency_ms: float


class GroundingTraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, max_records: int = 1_000) -> None:
        self._records: dict[str, TraceRecord] = {}
        self._max_records = max_records

    def create_record(
        self, *, query: str, result: GroundingResult, latency_ms: float
    ) -> TraceRecord:
        passage = result.external_passage
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            detected_code=result.detected_code,
            grounding_source=result.grounding_source,
            is_grounded=result.is_grounded,
            confidence=result.confidence,
            local_chunk_ids=[chunk.chunk_id for chunk in result.local_chunks],
            external_url=passage.source_url if passage else None,
            source_traces=list(result.source_traces),
            latency_ms=latency_ms,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self._max_records:
            del self._records[next(iter(self._records))]
        return record

    def __len__(self) -> int:
        return len(self._records)

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        sources = Counter(record.grounding_source for record in records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "grounded_rate": 0.0,
                "local": 0,
                "web": 0,
                "mixed": 0,
                "none": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        grounded = sum(1 for record in records if record.is_grounded)

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "grounded_rate": grounded / total,
            "local": sources["local"],
            "web": sources["web"],
            "mixed": sources["mixed"],
            "none": sources["none"],
        }


class Timer:
    """Measures one source call or resolution in milliseconds.

    `elapsed_ms` is set on exit, including when the block raises.
    """

    __slots__ = ("_started_at", "elapsed_ms")

    def __init__(self) -> None:
        self._started_at = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> Timer:
        self._started_at = time.perf_counter()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.elapsed_ms = round((time.perf_counter() - self._started_at) * 1000.0, 3)
