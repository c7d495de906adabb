"""Site crawler: depth- and page-bounded BFS with rate limiting.

The crawler owns the frontier and the visited set. Page tasks fetch,
discover links and extract, then hand their findings back; only the
crawler decides what gets queued, so no URL is fetched twice in a job.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, TypeVar

from .document import CrawlOptions, CrawlTarget, PageRecord
from .extractor import extract_page, parse_html
from .fetcher import Fetcher, open_fetcher
from .links import discover_links, discover_navigation_links, normalize_url

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitedQueue:
    """Run coroutines with bounded concurrency and a minimum start interval."""

    def __init__(self, concurrency: int, interval: float):
        self.concurrency = max(1, concurrency)
        self.interval = max(0.0, interval)
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._start_lock = asyncio.Lock()
        self._last_start: Optional[float] = None

    async def _wait_turn(self) -> None:
        async with self._start_lock:
            loop = asyncio.get_running_loop()
            if self._last_start is not None and self.interval:
                wait = self._last_start + self.interval - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_start = loop.time()

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any) -> T:
        async with self._semaphore:
            await self._wait_turn()
            return await func(*args)


@dataclass
class SiteCrawlResult:
    """Result of a site crawl operation."""

    pages: List[PageRecord] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    visited: Set[str] = field(default_factory=set)


@dataclass(slots=True)
class _PageOutcome:
    target: CrawlTarget
    page: Optional[PageRecord] = None
    links: List[str] = field(default_factory=list)
    error: Optional[str] = None
    stage: str = "fetch"


class SiteCrawler:
    """One crawl job over one site. Not reusable."""

    def __init__(self, url: str, options: Optional[CrawlOptions] = None):
        self.options = options or CrawlOptions()
        seed = normalize_url(str(url))
        if seed is None:
            raise ValueError(f"Not an http(s) URL: {url!r}")
        self.seed_url = seed
        self.source_url = str(url)
        self.visited: Set[str] = set()
        self.pages: List[PageRecord] = []
        self.errors: List[Dict[str, str]] = []
        self._frontier: Deque[CrawlTarget] = deque()
        self._queued: Set[str] = set()
        self._prefetched: Dict[str, Any] = {}
        self._fetcher: Optional[Fetcher] = None

    async def run(self) -> SiteCrawlResult:
        options = self.options
        LOGGER.info(
            "Starting site crawl: %s (max_depth=%d, max_pages=%d, javascript=%s)",
            self.seed_url,
            options.max_depth,
            options.max_pages,
            options.use_javascript,
        )
        queue = RateLimitedQueue(options.concurrency, options.delay)

        async with open_fetcher(
            options.use_javascript, options.fetch_timeout
        ) as fetcher:
            self._fetcher = fetcher
            try:
                nav_links = await self._navigation_pass()
                self._enqueue(CrawlTarget(self.seed_url, 0))
                for link in nav_links:
                    self._enqueue(CrawlTarget(link, 0))
                LOGGER.info("Seeded frontier with %d navigation link(s)", len(nav_links))

                while self._frontier and len(self.pages) < options.max_pages:
                    batch = [
                        self._frontier.popleft()
                        for _ in range(min(options.batch_size, len(self._frontier)))
                    ]
                    claimed = [target for target in batch if self._claim(target)]
                    if not claimed:
                        continue
                    outcomes = await asyncio.gather(
                        *(queue.run(self._process, target) for target in claimed)
                    )
                    for outcome in outcomes:
                        self._integrate(outcome)
            finally:
                self._fetcher = None

        LOGGER.info(
            "Crawl finished: %d page(s) indexed, %d visited, %d error(s)",
            len(self.pages),
            len(self.visited),
            len(self.errors),
        )
        return SiteCrawlResult(
            pages=list(self.pages),
            errors=list(self.errors),
            stats=self._stats(),
            visited=set(self.visited),
        )

    # -- frontier ownership ---------------------------------------------------

    def _enqueue(self, target: CrawlTarget) -> None:
        if target.url in self.visited or target.url in self._queued:
            return
        self._queued.add(target.url)
        self._frontier.append(target)

    def _claim(self, target: CrawlTarget) -> bool:
        """Check-and-mark without suspending."""
        self._queued.discard(target.url)
        if target.url in self.visited or target.depth > self.options.max_depth:
            return False
        self.visited.add(target.url)
        return True

    def _integrate(self, outcome: _PageOutcome) -> None:
        target = outcome.target
        if outcome.error is not None:
            self.errors.append(
                {"url": target.url, "error": outcome.error, "stage": outcome.stage}
            )
            return

        if outcome.page is not None and len(self.pages) < self.options.max_pages:
            self.pages.append(outcome.page)
            LOGGER.debug(
                "Indexed %s (%d/%d)",
                target.url,
                len(self.pages),
                self.options.max_pages,
            )

        # Links at max_depth would exceed the bound.
        if target.depth < self.options.max_depth:
            for link in outcome.links:
                self._enqueue(CrawlTarget(link, target.depth + 1))

    # -- page tasks ------------------------------------------------------------

    async def _fetch(self, url: str) -> str:
        if url in self._prefetched:
            cached = self._prefetched.pop(url)
            if isinstance(cached, Exception):
                raise cached
            return cached
        assert self._fetcher is not None
        return await self._fetcher.fetch(url)

    async def _navigation_pass(self) -> List[str]:
        assert self._fetcher is not None
        try:
            html = await self._fetcher.fetch(self.seed_url)
        except Exception as exc:
            LOGGER.warning("Navigation discovery failed for %s: %s", self.seed_url, exc)
            self._prefetched[self.seed_url] = exc
            return []
        self._prefetched[self.seed_url] = html
        links = discover_navigation_links(parse_html(html), self.seed_url, self.seed_url)
        return [link for link in links if link != self.seed_url]

    async def _process(self, target: CrawlTarget) -> _PageOutcome:
        outcome = _PageOutcome(target=target)
        try:
            html = await self._fetch(target.url)
        except Exception as exc:
            LOGGER.warning("Failed to fetch %s: %s", target.url, exc)
            outcome.error = str(exc) or type(exc).__name__
            return outcome

        outcome.stage = "extract"
        try:
            soup = parse_html(html)
            outcome.links = discover_links(
                soup,
                target.url,
                self.seed_url,
                same_domain_only=self.options.same_domain_only,
            )
            extracted = extract_page(soup, target.url)
        except Exception as exc:
            LOGGER.warning("Failed to extract %s: %s", target.url, exc)
            outcome.error = str(exc) or type(exc).__name__
            outcome.links = []
            return outcome

        if extracted.acceptable:
            outcome.page = PageRecord(
                url=target.url,
                title=extracted.title,
                content=extracted.content,
                page_type=extracted.page_type,
                source_url=self.source_url,
            )
        else:
            LOGGER.debug(
                "Skipping %s: only %d characters of content",
                target.url,
                len(extracted.content),
            )
        return outcome

    def _stats(self) -> Dict[str, Any]:
        return {
            "pages_visited": len(self.visited),
            "pages_indexed": len(self.pages),
            "total_characters": sum(len(page.content) for page in self.pages),
            "page_types": dict(Counter(page.page_type for page in self.pages)),
            "error_count": len(self.errors),
        }


async def crawl_site_async(
    url: str,
    options: Optional[CrawlOptions] = None,
) -> SiteCrawlResult:
    """
    Crawl a website starting from a seed URL.

    Args:
        url: The seed URL to start crawling from.
        options: Crawl budgets and fetch mode (defaults to ``CrawlOptions()``).

    Returns:
        SiteCrawlResult containing accepted pages, per-URL errors and stats.
    """
    return await SiteCrawler(url, options).run()


def crawl_site(
    url: str,
    options: Optional[CrawlOptions] = None,
) -> SiteCrawlResult:
    """Synchronous wrapper for crawl_site_async."""
    return asyncio.run(crawl_site_async(url, options))
