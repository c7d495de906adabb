"""Opening a site for chat: URL handling, session ids and the first visit."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Iterable, Optional
from urllib.parse import unquote, urlparse

import tldextract

from .document import CrawlOptions
from .jobs import start_crawl_job
from .quick_index import quick_index_page
from .store import CrawlState

if TYPE_CHECKING:
    from .services import Services

LOGGER = logging.getLogger(__name__)

BLOCKED_PATH_MARKERS = (
    "sw.js",
    "service-worker.js",
    "manifest.json",
    "favicon.ico",
    "robots.txt",
    "sitemap.xml",
    "api/",
    "_next/",
    "static/",
)

# Sites that render their content client-side.
JS_HEAVY_DOMAINS = frozenset(
    {
        "leetcode.com",
        "reddit.com",
        "twitter.com",
        "medium.com",
        "vercel.app",
        "dev.to",
    }
)

_SCHEME_PREFIX_RE = re.compile(r"^https?:/+", re.I)
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


class SiteOpenError(Exception):
    """Raised when a site cannot be opened for chat."""

    def __init__(self, message: str, url: str = ""):
        self.url = url
        super().__init__(message)


def reconstruct_site_url(raw: str) -> Optional[str]:
    """Turn a path-style or bare URL into an absolute one.

    Returns ``None`` for framework and meta paths that are not sites.
    """
    candidate = unquote(raw or "").strip().lstrip("/")
    if not candidate or any(marker in candidate for marker in BLOCKED_PATH_MARKERS):
        return None
    if candidate.startswith(("http://", "https://")):
        return candidate
    # "https:/example.com" after path joining loses a slash
    return f"https://{_SCHEME_PREFIX_RE.sub('', candidate)}"


def session_id_for(url: str) -> str:
    return f"session_{_NON_ALNUM_RE.sub('_', url)}"


def resolve_session_url(session_id: str, indexed_urls: Iterable[str]) -> Optional[str]:
    """Find the indexed site whose session id matches."""
    for url in indexed_urls:
        if session_id_for(url) == session_id:
            return url
    return None


@lru_cache(maxsize=256)
def _registrable_domain(host: str) -> Optional[str]:
    """Extract the registrable domain from a hostname."""
    if not host:
        return None
    extracted = tldextract.extract(host)
    if not extracted.domain or not extracted.suffix:
        return host
    return f"{extracted.domain}.{extracted.suffix}"


def needs_javascript(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return _registrable_domain(host) in JS_HEAVY_DOMAINS


@dataclass(slots=True)
class SiteSession:
    url: str
    session_id: str
    greeting: str
    first_visit: bool = False
    use_javascript: bool = False
    status: Optional[str] = None


async def open_site(
    raw_url: str,
    *,
    services: "Services",
    start_background: bool = True,
) -> SiteSession:
    """
    Prepare a site for chat.

    On the first visit the homepage is quick-indexed, the site is marked as
    indexed, its status set to ``pending`` and a background crawl started.
    Later visits only report what is already indexed.

    Raises:
        SiteOpenError: For blocked URLs or when the homepage yields no content.
    """
    url = reconstruct_site_url(raw_url)
    if url is None:
        raise SiteOpenError(f"Not a site URL: {raw_url}", url=raw_url)

    session_id = session_id_for(url)
    store = services.store

    if not await store.is_indexed(url):
        use_javascript = needs_javascript(url)
        LOGGER.info("Quick indexing homepage: %s (javascript=%s)", url, use_javascript)
        homepage = await quick_index_page(url, use_javascript, services=services)
        if not homepage.success:
            raise SiteOpenError("Could not extract content from homepage", url=url)

        await store.mark_indexed(url)
        await store.mark_pending(url, session_id, homepage_indexed=True)
        if start_background:
            start_crawl_job(
                url,
                session_id,
                CrawlOptions.for_background_job(
                    max_depth=2, max_pages=30, use_javascript=use_javascript
                ),
                services=services,
            )
        return SiteSession(
            url=url,
            session_id=session_id,
            greeting=(
                f"I've indexed the homepage of {homepage.title} and you can start "
                "asking questions now!\n\n"
                "I'm crawling the rest of the site in the background to gather "
                f"more information.\n\nCurrent site: {url}"
            ),
            first_visit=True,
            use_javascript=use_javascript,
            status=CrawlState.pending.value,
        )

    status = await store.get_status(url)
    stats = await services.vectors.namespace_stats(url)
    greeting = f"Hello! I have information about {url}. What would you like to know?"
    if status is not None and status.state is CrawlState.completed:
        count = stats["record_count"] or status.total_pages or "multiple"
        greeting = (
            f"I have indexed {count} pages from this site. Ask me anything!\n\n"
            f"Site: {url}"
        )
    elif status is not None and status.state is CrawlState.crawling:
        greeting = (
            "Still crawling and indexing pages in the background...\n\n"
            f"Site: {url}"
        )
    return SiteSession(
        url=url,
        session_id=session_id,
        greeting=greeting,
        status=status.state.value if status else None,
    )
