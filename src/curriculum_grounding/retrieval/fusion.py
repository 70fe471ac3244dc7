"""Score fusion for hybrid (vector + lexical) retrieval."""

from __future__ import annotations

import re
from math import sqrt

from curriculum_grounding.config import SearchConfig

_TOKEN_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class WeightedFusion:
    """Combines vector and lexical relevance into one fused score.

    Both inputs are expected in [0, 1]; negative cosine similarity is clamped
    to zero so the fused score stays in the same range.
    """

    def __init__(self, vector_weight: float = 0.6, lexical_weight: float = 0.4) -> None:
        self.vector_weight = vector_weight
        self.lexical_weight = lexical_weight

    @classmethod
    def from_config(cls, config: SearchConfig) -> "WeightedFusion":
        return cls(config.vector_weight, config.lexical_weight)

    def combine(self, vector_score: float, lexical_score: float) -> float:
        vector_score = min(1.0, max(0.0, vector_score))
        lexical_score = min(1.0, max(0.0, lexical_score))
        return (vector_score * self.vector_weight) + (lexical_score * self.lexical_weight)


def lexical_overlap(query: str, text: str) -> float:
    """Share of query tokens present in `text`."""

    query_terms = set(tokenize(query))
    if not query_terms:
        return 0.0
    text_terms = set(tokenize(text))
    return len(query_terms & text_terms) / len(query_terms)


def cosine_similarity(query: list[float], candidate: list[float]) -> float:
    """Cosine of two equal-length vectors; 0.0 for mismatched or zero vectors."""

    if not query or len(query) != len(candidate):
        return 0.0
    magnitude = sqrt(sum(q * q for q in query)) * sqrt(sum(c * c for c in candidate))
    if not magnitude:
        return 0.0
    return sum(q * c for q, c in zip(query, candidate, strict=True)) / magnitude


def tokenize(text: str) -> list[str]:
    return [token.lower() for token in _TOKEN_PATTERN.findall(text)]
