"""Provenance-tagged context for the downstream answer-generation step."""

from __future__ import annotations

from dataclasses import dataclass, field

from curriculum_grounding.errors import UngroundedQueryError
from curriculum_grounding.types import GroundingResult, GroundingSource

NO_VERIFIED_CONTEXT = "No verified curriculum context found for this query."

GROUNDING_RULES = """
Rules:
1) Answer only from the tagged segments below.
2) Cite every factual statement with its segment tag, e.g. [LOCAL <document>/<chunk>] or [WEB <url>].
3) If the segments do not support an answer, refuse and say that no verified context was found.
4) Never fall back to unsupported general knowledge.
""".strip()

_SEGMENT_SEPARATOR = "\n---\n"


@dataclass(slots=True)
class GroundedContext:
    """Context block handed to the synthesis layer."""

    text: str
    citations: list[str] = field(default_factory=list)
    is_grounded: bool = False
    grounding_source: GroundingSource = "none"


def assemble_context(result: GroundingResult) -> GroundedContext:
    """Concatenate local chunks and the web passage with provenance tags.

    An ungrounded result yields the explicit `NO_VERIFIED_CONTEXT` signal
    rather than an empty block.
    """

    if not result.is_grounded:
        return GroundedContext(text=NO_VERIFIED_CONTEXT)

    segments: list[str] = []
    citations: list[str] = []
    for chunk in result.local_chunks:
        citation = f"LOCAL {chunk.document_id}/{chunk.chunk_id}"
        header = f"[{citation}] score={chunk.score:.4f}"
        if chunk.section_title:
            header += f" section={chunk.section_title!r}"
        if chunk.page_number is not None:
            header += f" page={chunk.page_number}"
        segments.append(f"{header}\n{chunk.text.strip()}")
        citations.append(citation)

    passage = result.external_passage
    if passage is not None:
        citation = f"WEB {passage.source_url}"
        segments.append(
            f"[{citation}] authority={passage.authority!r} title={passage.title!r}\n"
            f"{passage.text.strip()}"
        )
        citations.append(citation)

    text = f"{GROUNDING_RULES}\n\n{_SEGMENT_SEPARATOR.join(segments)}"
    return GroundedContext(
        text=text,
        citations=citations,
        is_grounded=True,
        grounding_source=result.grounding_source,
    )


def require_grounded(result: GroundingResult) -> GroundedContext:
    """Return the context, or raise when the caller must refuse to answer."""

    context = assemble_context(result)
    if not context.is_grounded:
        raise UngroundedQueryError(NO_VERIFIED_CONTEXT)
    return context
