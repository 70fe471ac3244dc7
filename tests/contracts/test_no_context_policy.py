import pytest

from curriculum_grounding.errors import UngroundedQueryError
from curriculum_grounding.routing.context import (
    GROUNDING_RULES,
    NO_VERIFIED_CONTEXT,
    assemble_context,
    require_grounded,
)
from curriculum_grounding.types import GroundingResult, RetrievedChunk, ScrapedPassage


def test_rules_forbid_unsupported_answers() -> None:
    assert "Answer only from the tagged segments" in GROUNDING_RULES
    assert "Never fall back to unsupported general knowledge" in GROUNDING_RULES
    assert "no verified context was found" in GROUNDING_RULES


def test_ungrounded_result_yields_explicit_signal() -> None:
    result = GroundingResult(confidence=0.12)

    context = assemble_context(result)

    assert result.grounding_source == "none"
    assert context.text == NO_VERIFIED_CONTEXT
    assert context.citations == []
    assert not context.is_grounded
    with pytest.raises(UngroundedQueryError):
        require_grounded(result)


def test_every_segment_carries_its_provenance() -> None:
    result = GroundingResult(
        local_chunks=[
            RetrievedChunk(
                chunk_id="sci8-0004",
                document_id="science-grade-8",
                text="Density is mass per unit volume.",
                score=0.31,
                rank=1,
                section_title="Matter",
                page_number=12,
            )
        ],
        external_passage=ScrapedPassage(
            authority="Sindh Curriculum Portal (DCAR)",
            source_url="https://dcar.gos.pk/science.pdf",
            text="[PDF Excerpt] S-08-A-05 Describe density.",
            title="General Science",
        ),
    )

    context = require_grounded(result)

    assert context.grounding_source == "mixed"
    assert context.citations == [
        "LOCAL science-grade-8/sci8-0004",
        "WEB https://dcar.gos.pk/science.pdf",
    ]
    assert context.text.startswith(GROUNDING_RULES)
    assert "[LOCAL science-grade-8/sci8-0004] score=0.3100 section='Matter' page=12" in context.text
    assert "[WEB https://dcar.gos.pk/science.pdf] authority=" in context.text
    assert context.text.index("Density is mass") < context.text.index("S-08-A-05 Describe")
