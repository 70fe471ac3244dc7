"""Passage extraction from portal HTML pages and PDF documents."""

from __future__ import annotations

import re
from io import BytesIO
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag
from pypdf import PdfReader

from curriculum_grounding.types import FragmentKind, ScrapedFragment

_NON_CONTENT_SELECTORS = "script, style, noscript, nav, header, footer, aside, iframe, form, svg"
_AD_MARKERS = re.compile(
    r"(^|[\s_-])(ad|ads|advert|advertisement|banner|sponsor|sponsored|promo)($|[\s_-])",
    flags=re.IGNORECASE,
)
_WHITESPACE = re.compile(r"\s+")

FRAGMENT_LABELS: dict[FragmentKind, str] = {
    "table_row": "[Table Row]",
    "link": "[Link]",
    "content": "[Content]",
    "pdf_excerpt": "[PDF Excerpt]",
}


def render_fragments(fragments: list[ScrapedFragment]) -> str:
    return "\n".join(f"{FRAGMENT_LABELS[f.kind]} {f.text}" for f in fragments)


def matches_any(text: str, needles: list[str]) -> bool:
    lowered = text.lower()
    return any(needle.lower() in lowered for needle in needles if needle)


def clean_html(html: str) -> BeautifulSoup:
    """Parse `html` and drop scripts, styling, navigation and ad containers."""

    soup = BeautifulSoup(html, "html.parser")
    for element in [*soup.select(_NON_CONTENT_SELECTORS), *soup.find_all(_is_ad_container)]:
        # Nested matches are already gone once an ancestor is decomposed.
        if not element.decomposed:
            element.decompose()
    return soup


def extract_html_fragments(
    html: str,
    page_url: str,
    needles: list[str],
    *,
    fallback_chars: int = 100,
    min_block_chars: int = 20,
) -> tuple[str, list[ScrapedFragment]]:
    """Find fragments of a page that mention any needle.

    Structural classes are searched in priority order: table rows, then
    anchors with resolvable hrefs, then generic content blocks. A lower
    class is only consulted while the matched text is under
    `fallback_chars`.

    Returns:
        The page title (empty when absent) and the matched fragments.
    """

    soup = clean_html(html)
    title = _collapse(soup.title.get_text(" ")) if soup.title else ""
    fragments: list[ScrapedFragment] = []
    seen: set[str] = set()

    def _add(kind: FragmentKind, text: str, url: str) -> None:
        if text and text not in seen:
            seen.add(text)
            fragments.append(ScrapedFragment(kind=kind, text=text, url=url))

    for row in soup.select("table tr"):
        text = _collapse(row.get_text(" "))
        if matches_any(text, needles):
            _add("table_row", text, page_url)

    if len(render_fragments(fragments)) < fallback_chars:
        for anchor in soup.select("a[href]"):
            href = _resolve_href(page_url, str(anchor.get("href", "")))
            text = _collapse(anchor.get_text(" "))
            if href and matches_any(text, needles):
                _add("link", f"{text} ({href})", href)

    if len(render_fragments(fragments)) < fallback_chars:
        for block in soup.select("p, li, h1, h2, h3, h4"):
            text = _collapse(block.get_text(" "))
            if len(text) > min_block_chars and matches_any(text, needles):
                _add("content", text, page_url)

    return title, fragments


def extract_pdf_text(data: bytes) -> str:
    reader = PdfReader(BytesIO(data))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def excerpt_around(
    text: str,
    needles: list[str],
    *,
    chars_before: int = 200,
    chars_after: int = 1_200,
) -> str | None:
    """Bounded window around the first case-insensitive needle occurrence.

    The window extends further after the match than before it: a code is
    normally followed by its definition.
    """

    lowered = text.lower()
    positions = [lowered.find(needle.lower()) for needle in needles if needle]
    positions = [position for position in positions if position >= 0]
    if not positions:
        return None
    start_at = min(positions)
    window = text[max(0, start_at - chars_before) : start_at + chars_after]
    return _collapse(window) or None


def _resolve_href(base_url: str, href: str) -> str | None:
    href = href.strip()
    if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
        return None
    absolute = urljoin(base_url, href)
    parsed = urlparse(absolute)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return absolute


def _is_ad_container(tag: Tag) -> bool:
    classes = tag.get("class") or []
    markers = " ".join([*classes, str(tag.get("id") or "")])
    return bool(markers.strip()) and bool(_AD_MARKERS.search(markers))


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()
