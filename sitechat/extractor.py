"""Turn fetched HTML into structured plain text, a title and a page type.

The structured text is what gets chunked and embedded. It looks like::

    === Story ===
    URL: https://example.com/stories/one

    TITLE: The First Story

    ## The First Story
    An opening paragraph that is long enough to keep.
    • A list item
    DATE: 2024-01-01

    TAGS: horror, short

    === END ===
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from .config import (
    ARTICLE_TITLE_SELECTORS,
    CATEGORY_SELECTORS,
    MAIN_SELECTORS,
    NOISE_SELECTORS,
    QUICK_NOISE_SELECTORS,
    SUMMARY_SELECTORS,
    TAG_SELECTORS,
)

LOGGER = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 100
MIN_ELEMENT_LENGTH = 10
MIN_PARAGRAPH_LENGTH = 20
MAX_TITLE_LENGTH = 200
MAX_TAG_LENGTH = 30

# (path substring, page type); first match wins
PAGE_TYPE_RULES = (
    ("archive", "Archive"),
    ("thought", "Thoughts"),
    ("affiliate", "Affiliate"),
    ("feedback", "Feedback"),
    ("stor", "Story"),
)

HEADING_PREFIXES = {
    "h1": "##",
    "h2": "###",
    "h3": "####",
    "h4": "#####",
    "h5": "#####",
    "h6": "#####",
}

WALKED_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote", "time"]


@dataclass(slots=True)
class ExtractedPage:
    content: str
    title: str
    page_type: str

    @property
    def acceptable(self) -> bool:
        return is_acceptable(self.content)


@dataclass(slots=True)
class PageSummary:
    """Quick-index view of a page: description plus landmark or body text."""

    title: str
    content: str


def is_acceptable(content: str) -> bool:
    return len(content) > MIN_CONTENT_LENGTH


def squash(text: Optional[str]) -> str:
    """Collapse every whitespace run to a single space."""
    return " ".join((text or "").split())


def element_text(element: Tag) -> str:
    return squash(element.get_text(" "))


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def page_type_for(url: str) -> str:
    """Coarse page classification from the URL path."""
    path = urlparse(url).path
    lowered = path.lower()
    for needle, page_type in PAGE_TYPE_RULES:
        if needle in lowered:
            return page_type
    if path in ("", "/"):
        return "Homepage"
    return "Page"


def strip_noise(soup: BeautifulSoup, selectors: Sequence[str] = NOISE_SELECTORS) -> None:
    """Remove scripts, chrome and ads in place."""
    for element in soup.select(", ".join(selectors)):
        element.decompose()


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return squash(tag.get("content"))


def _first_text(soup: BeautifulSoup, selector: str) -> str:
    element = soup.select_one(selector)
    return element_text(element) if element is not None else ""


def content_container(soup: BeautifulSoup) -> Union[BeautifulSoup, Tag]:
    """First content landmark present, else ``<body>``, else the whole document."""
    for selector in MAIN_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            return element
    return soup.body or soup


# ---------------------------------------------------------------------------
# Title strategies
# ---------------------------------------------------------------------------


def _title_from_article_heading(soup: BeautifulSoup) -> str:
    for selector in ARTICLE_TITLE_SELECTORS:
        text = _first_text(soup, selector)
        if text:
            return text
    return ""


def _title_from_og(soup: BeautifulSoup) -> str:
    return _meta_content(soup, property="og:title")


def _title_from_title_tag(soup: BeautifulSoup) -> str:
    return _first_text(soup, "title")


def _title_from_first_heading(soup: BeautifulSoup) -> str:
    return _first_text(soup, "h1")


TitleStrategy = Callable[[BeautifulSoup], str]

TITLE_STRATEGIES: Sequence[TitleStrategy] = (
    _title_from_article_heading,
    _title_from_og,
    _title_from_title_tag,
    _title_from_first_heading,
)


def resolve_title(
    soup: BeautifulSoup,
    url: str,
    strategies: Sequence[TitleStrategy] = TITLE_STRATEGIES,
) -> str:
    """Evaluate title strategies in order; fall back to the page type."""
    for strategy in strategies:
        title = squash(strategy(soup))
        if title:
            return title[:MAX_TITLE_LENGTH]
    return page_type_for(url)


# ---------------------------------------------------------------------------
# Structured content
# ---------------------------------------------------------------------------


def _render_element(element: Tag) -> Optional[str]:
    text = element_text(element)
    if len(text) < MIN_ELEMENT_LENGTH:
        return None

    name = element.name.lower()
    if name in HEADING_PREFIXES:
        return f"\n{HEADING_PREFIXES[name]} {text}"
    if name == "p":
        return text if len(text) > MIN_PARAGRAPH_LENGTH else None
    if name == "li":
        return f"• {text}"
    if name == "blockquote":
        return f"> {text}"
    if name == "time":
        return f"DATE: {element.get('datetime') or text}"
    return None


def collect_tags(soup: BeautifulSoup) -> List[str]:
    """Short texts of tag-like elements, de-duplicated in document order."""
    tags: List[str] = []
    for element in soup.select(", ".join(TAG_SELECTORS)):
        text = element_text(element)
        if 0 < len(text) < MAX_TAG_LENGTH and text not in tags:
            tags.append(text)
    return tags


def extract_structured_content(soup: BeautifulSoup, url: str) -> str:
    page_type = page_type_for(url)
    sections = [f"=== {page_type} ===", f"URL: {url}\n"]

    heading = (
        _title_from_first_heading(soup)
        or _title_from_title_tag(soup)
        or _title_from_og(soup)
    )
    if heading:
        sections.append(f"TITLE: {heading}\n")

    category = " ".join(
        element_text(element) for element in soup.select(", ".join(CATEGORY_SELECTORS))
    ).strip()
    if category:
        sections.append(f"CATEGORY: {category}\n")

    for element in content_container(soup).find_all(WALKED_TAGS):
        rendered = _render_element(element)
        if rendered is not None:
            sections.append(rendered)

    tags = collect_tags(soup)
    if tags:
        sections.append(f"\nTAGS: {', '.join(tags)}")

    sections.append("\n=== END ===\n")
    return "\n".join(sections).strip()


def extract_page(document: Union[str, BeautifulSoup], url: str) -> ExtractedPage:
    """Strip noise from the document and extract content, title and type.

    A ``BeautifulSoup`` argument is modified in place.
    """
    soup = parse_html(document) if isinstance(document, str) else document
    strip_noise(soup)
    return ExtractedPage(
        content=extract_structured_content(soup, url),
        title=resolve_title(soup, url),
        page_type=page_type_for(url),
    )


# ---------------------------------------------------------------------------
# Quick-index summary
# ---------------------------------------------------------------------------


def extract_summary(document: Union[str, BeautifulSoup], url: str) -> PageSummary:
    """Flat text view used to index a homepage right away.

    Content is the longer of the first content landmark's text and the body
    text, prefixed by the meta description when there is one.
    """
    soup = parse_html(document) if isinstance(document, str) else document
    strip_noise(soup, QUICK_NOISE_SELECTORS)

    title = (
        _title_from_title_tag(soup)
        or _title_from_first_heading(soup)
        or _title_from_og(soup)
        or url
    )[:MAX_TITLE_LENGTH]

    landmark = soup.select_one(", ".join(SUMMARY_SELECTORS))
    landmark_text = element_text(landmark) if landmark is not None else ""
    body_text = element_text(soup.body or soup)
    text = landmark_text if len(landmark_text) >= len(body_text) else body_text

    description = _meta_content(soup, name="description") or _meta_content(
        soup, property="og:description"
    )
    content = f"{description}\n\n{text}".strip() if description else text
    return PageSummary(title=title, content=content)
