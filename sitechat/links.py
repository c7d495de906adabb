"""Hyperlink discovery and URL normalization."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Set
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from .config import NAVIGATION_SELECTORS

BINARY_EXTENSION_RE = re.compile(r"\.(pdf|jpg|jpeg|png|gif|zip|exe|mp4|mp3)$", re.I)
AUTH_PATH_RE = re.compile(r"log(in|out)", re.I)


def normalize_url(href: str, base: Optional[str] = None) -> Optional[str]:
    """Resolve ``href`` against ``base`` and canonicalize scheme and host.

    Returns ``None`` for anything that is not an http(s) URL.
    """
    if not href:
        return None
    absolute = urljoin(base, href.strip()) if base else href.strip()
    parsed = urlparse(absolute)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        return None
    return urlunparse(
        (
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            parsed.path or "/",
            parsed.params,
            parsed.query,
            parsed.fragment,
        )
    )


def same_origin(url: str, other: str) -> bool:
    first, second = urlparse(url), urlparse(other)
    return (first.scheme, first.netloc.lower()) == (second.scheme, second.netloc.lower())


def is_content_link(url: str) -> bool:
    """True unless the URL is a fragment link, a binary file, or a login/logout page."""
    if "#" in url:
        return False
    path = urlparse(url).path
    if BINARY_EXTENSION_RE.search(path):
        return False
    if AUTH_PATH_RE.search(path):
        return False
    return True


def _unique(urls: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    ordered = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


def discover_links(
    soup: BeautifulSoup,
    page_url: str,
    base_url: str,
    *,
    same_domain_only: bool = True,
) -> List[str]:
    """Content links of a page in document order, de-duplicated.

    Args:
        soup: Parsed page.
        page_url: URL the page was fetched from (resolves relative links).
        base_url: Seed URL of the crawl (defines the allowed origin).
        same_domain_only: Drop links that leave the seed's origin.
    """
    candidates = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        if "#" in href:
            continue
        url = normalize_url(href, page_url)
        if url is None or not is_content_link(url):
            continue
        if same_domain_only and not same_origin(url, base_url):
            continue
        candidates.append(url)
    return _unique(candidates)


def discover_navigation_links(
    soup: BeautifulSoup,
    page_url: str,
    base_url: str,
) -> List[str]:
    """Links inside navigation landmarks; always restricted to the seed's origin."""
    candidates = []
    for anchor in soup.select(", ".join(NAVIGATION_SELECTORS)):
        href = anchor.get("href")
        if not href or "#" in href:
            continue
        url = normalize_url(href, page_url)
        if url is None or not is_content_link(url):
            continue
        if not same_origin(url, base_url):
            continue
        candidates.append(url)
    return _unique(candidates)
