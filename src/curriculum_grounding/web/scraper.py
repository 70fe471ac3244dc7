"""Live fallback scraper for the external curriculum portal."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import httpx

from curriculum_grounding.config import PortalResource, ScraperConfig
from curriculum_grounding.errors import ScrapeError
from curriculum_grounding.recognition.codes import code_variants, extract_code
from curriculum_grounding.types import ScrapedFragment, ScrapedPassage
from curriculum_grounding.web.extract import (
    excerpt_around,
    extract_html_fragments,
    extract_pdf_text,
    render_fragments,
)

logger = logging.getLogger(__name__)


class PortalScraper:
    """Scans a fixed, ordered list of portal resources for query-relevant text.

    Resources are fetched one at a time in configured order, so the early
    exit is deterministic: once the accumulated text passes
    `early_exit_chars`, later resources are never requested. A resource that
    times out, returns an HTTP error or cannot be parsed is skipped.
    """

    def __init__(
        self,
        config: ScraperConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        pdf_text_extractor: Callable[[bytes], str] = extract_pdf_text,
    ) -> None:
        self.config = config or ScraperConfig()
        self._client = client
        self._pdf_text_extractor = pdf_text_extractor

    async def scrape(self, query: str) -> ScrapedPassage | None:
        """Return a passage for `query`, or None when the portal has too little.

        None is a successful outcome (nothing useful found), not an error.
        """

        needles = search_needles(query)
        if not needles:
            return None
        if self._client is not None:
            return await self._scan(self._client, needles)
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._scan(client, needles)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def _scan(
        self, client: httpx.AsyncClient, needles: list[str]
    ) -> ScrapedPassage | None:
        fragments: list[ScrapedFragment] = []
        contributors: list[tuple[PortalResource, str]] = []

        for resource in self.config.resources:
            try:
                title, found = await asyncio.wait_for(
                    self._scrape_resource(client, resource, needles),
                    timeout=self.config.request_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning("Portal resource timed out, skipping: %s", resource.url)
                continue
            except ScrapeError as exc:
                logger.warning("Portal resource skipped: %s", exc)
                continue

            if found:
                fragments.extend(found)
                contributors.append((resource, title))

            accumulated = len(render_fragments(fragments))
            if accumulated > self.config.early_exit_chars:
                logger.info(
                    "Portal scan stopped early after %s (%d chars)", resource.url, accumulated
                )
                break

        text = render_fragments(fragments)
        if len(text) < self.config.min_useful_chars or not contributors:
            logger.info("Portal scan found no usable passage for %r", needles[0])
            return None

        resource, title = contributors[0]
        return ScrapedPassage(
            authority=resource.authority,
            source_url=resource.url,
            text=text[: self.config.max_passage_chars],
            title=title or resource.title or resource.authority,
            fragments=fragments,
        )

    async def _scrape_resource(
        self,
        client: httpx.AsyncClient,
        resource: PortalResource,
        needles: list[str],
    ) -> tuple[str, list[ScrapedFragment]]:
        try:
            response = await client.get(
                resource.url,
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.request_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ScrapeError(f"{resource.url}: {exc}") from exc

        # CPU-bound parsing runs in a worker thread.
        try:
            if resource.kind == "pdf":
                return await asyncio.to_thread(
                    self._pdf_fragments, resource, response.content, needles
                )
            return await asyncio.to_thread(
                extract_html_fragments,
                response.text,
                resource.url,
                needles,
                fallback_chars=self.config.block_fallback_chars,
                min_block_chars=self.config.min_block_chars,
            )
        except Exception as exc:
            raise ScrapeError(f"Could not parse {resource.url}: {exc}") from exc

    def _pdf_fragments(
        self, resource: PortalResource, data: bytes, needles: list[str]
    ) -> tuple[str, list[ScrapedFragment]]:
        excerpt = excerpt_around(
            self._pdf_text_extractor(data),
            needles,
            chars_before=self.config.pdf_chars_before,
            chars_after=self.config.pdf_chars_after,
        )
        title = resource.title or ""
        if excerpt is None:
            return title, []
        return title, [ScrapedFragment(kind="pdf_excerpt", text=excerpt, url=resource.url)]


def search_needles(query: str) -> list[str]:
    """Strings to look for on the portal.

    A query naming a standard code is searched by every printed form of that
    code; otherwise the whitespace-collapsed query itself is the needle.
    """

    code = extract_code(query)
    if code is not None:
        return code_variants(code)
    collapsed = " ".join(query.split())
    return [collapsed] if collapsed else []
