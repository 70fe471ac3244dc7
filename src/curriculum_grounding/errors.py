"""Exception hierarchy for the grounding pipeline."""

from __future__ import annotations


class GroundingError(Exception):
    """Base class for all grounding pipeline errors."""


class QueryValidationError(GroundingError, ValueError):
    """Raised when a query, scope or explicit code is malformed."""


class EmbeddingError(GroundingError):
    """Raised when the embedding provider fails or returns an unusable vector."""


class SearchBackendError(GroundingError):
    """Raised when the hybrid search backend fails or returns malformed rows.

    Distinct from an empty result: the router records the source as failed
    rather than confidently empty.
    """


class ScrapeError(GroundingError):
    """Raised when a single portal resource cannot be fetched or parsed."""


class UngroundedQueryError(GroundingError):
    """Raised when a consumer requires grounded context and none was found."""
