"""HTML fetch strategies: plain HTTP and rendered browser DOM.

Both fetchers are async context managers that own their transport for the
lifetime of a crawl job::

    async with open_fetcher(use_javascript=False, timeout=10.0) as fetcher:
        html = await fetcher.fetch("https://example.com")

A failed fetch always raises :class:`FetchError`.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Dict, Optional, Union

import httpx
from crawl4ai import AsyncWebCrawler

from .config import DEFAULT_USER_AGENT, build_browser_config, build_render_run_config

LOGGER = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when a single URL cannot be fetched."""

    def __init__(
        self,
        message: str,
        url: str = "",
        status_code: Optional[int] = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class StaticFetcher:
    """Plain HTTP GET fetcher backed by one ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.timeout = timeout
        self.headers = {"User-Agent": DEFAULT_USER_AGENT, **(headers or {})}
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "StaticFetcher":
        self._client = httpx.AsyncClient(
            headers=self.headers,
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=5,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> str:
        if self._client is None:
            raise RuntimeError("StaticFetcher used outside 'async with'")
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as exc:
            raise FetchError(f"Timed out after {self.timeout}s", url=url) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Request failed: {exc}", url=url) from exc

        if response.status_code != 200:
            raise FetchError(
                f"HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        return response.text


class RenderedFetcher:
    """Headless-browser fetcher sharing one Crawl4AI session per job.

    Each ``fetch`` call opens its own page inside the shared browser and
    Crawl4AI closes it again, including on errors.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        *,
        settle_delay: float = 2.0,
        text_mode: bool = False,
    ):
        self.timeout = timeout
        self.settle_delay = settle_delay
        self.text_mode = text_mode
        self._stack: Optional[AsyncExitStack] = None
        self._crawler: Optional[AsyncWebCrawler] = None

    async def __aenter__(self) -> "RenderedFetcher":
        stack = AsyncExitStack()
        try:
            self._crawler = await stack.enter_async_context(
                AsyncWebCrawler(config=build_browser_config(text_mode=self.text_mode))
            )
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        LOGGER.info("Browser launched")
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None
            self._crawler = None
            LOGGER.info("Browser closed")

    async def fetch(self, url: str) -> str:
        if self._crawler is None:
            raise RuntimeError("RenderedFetcher used outside 'async with'")
        run_config = build_render_run_config(
            self.timeout, settle_delay=self.settle_delay
        )
        container = await self._crawler.arun(url=url, config=run_config)

        try:
            result = container[0]
        except (IndexError, TypeError):
            result = None

        if result is None:
            raise FetchError("Browser returned no result", url=url)
        if not getattr(result, "success", False):
            status_code = getattr(result, "status_code", None)
            message = getattr(result, "error_message", None) or "Navigation failed"
            raise FetchError(message, url=url, status_code=status_code)
        return result.html or ""


Fetcher = Union[StaticFetcher, RenderedFetcher]


def open_fetcher(
    use_javascript: bool,
    timeout: float,
    *,
    settle_delay: float = 2.0,
    text_mode: bool = False,
) -> Fetcher:
    """Pick the fetch strategy for a job; use the result with ``async with``."""
    if use_javascript:
        return RenderedFetcher(
            timeout, settle_delay=settle_delay, text_mode=text_mode
        )
    return StaticFetcher(timeout)
