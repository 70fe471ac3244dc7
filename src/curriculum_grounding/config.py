"""Configuration models for the grounding pipeline."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class PortalResource(BaseModel):
    """One fixed resource on the external curriculum portal."""

    url: str = Field(min_length=1)
    kind: Literal["html", "pdf"]
    authority: str = "Sindh Curriculum Portal (DCAR)"
    title: str | None = None


DEFAULT_PORTAL_RESOURCES: tuple[PortalResource, ...] = (
    PortalResource(
        url="https://dcar.gos.pk/Sindh%20Curriculum.html",
        kind="html",
        title="Sindh Curriculum",
    ),
    PortalResource(
        url=(
            "https://dcar.gos.pk/Sindh-Curriculum/"
            "General%20Science%20Grade%20IV-VIII%2002%20May%202024.pdf"
        ),
        kind="pdf",
        title="General Science Grade IV-VIII (2024)",
    ),
)


class CacheConfig(BaseModel):
    """Configures the persistent embedding cache."""

    ttl_seconds: int = Field(default=86_400, ge=1)
    key_prefix: str = Field(default="v_cache:", min_length=1)


class SearchConfig(BaseModel):
    """Configures hybrid search request shape and score fusion."""

    match_count: int = Field(default=10, ge=1, le=100)
    vector_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    lexical_weight: float = Field(default=0.4, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "SearchConfig":
        if abs((self.vector_weight + self.lexical_weight) - 1.0) > 1e-6:
            raise ValueError("vector_weight and lexical_weight must sum to 1.0")
        return self


class ScraperConfig(BaseModel):
    """Configures the portal scraper's fetch limits and extraction thresholds."""

    resources: list[PortalResource] = Field(
        default_factory=lambda: list(DEFAULT_PORTAL_RESOURCES)
    )
    request_timeout_seconds: float = Field(default=20.0, gt=0.0)
    user_agent: str = BROWSER_USER_AGENT
    early_exit_chars: int = Field(default=3_000, ge=1)
    min_useful_chars: int = Field(default=50, ge=0)
    max_passage_chars: int = Field(default=5_000, ge=100)
    block_fallback_chars: int = Field(default=100, ge=0)
    min_block_chars: int = Field(default=20, ge=0)
    pdf_chars_before: int = Field(default=200, ge=0)
    pdf_chars_after: int = Field(default=1_200, ge=1)


class RouterConfig(BaseModel):
    """Configures the local-first, confidence-gated routing policy."""

    confidence_floor: float = Field(default=0.4, ge=0.0, le=1.0)
    time_budget_seconds: float = Field(default=25.0, gt=0.0)
    search_limit: int = Field(default=10, ge=1, le=100)
