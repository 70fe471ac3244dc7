"""Curriculum grounding package."""

from .config import CacheConfig, RouterConfig, ScraperConfig, SearchConfig
from .types import GroundingResult

__all__ = [
    "CacheConfig",
    "GroundingResult",
    "RouterConfig",
    "ScraperConfig",
    "SearchConfig",
]
