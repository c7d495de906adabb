"""Index a single page right away, before the background crawl starts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .document import PageRecord
from .extractor import extract_summary, is_acceptable, page_type_for
from .fetcher import RenderedFetcher, StaticFetcher
from .indexer import index_page

if TYPE_CHECKING:
    from .services import Services

LOGGER = logging.getLogger(__name__)

STATIC_TIMEOUT = 10.0
RENDERED_TIMEOUT = 15.0
RENDERED_SETTLE_DELAY = 3.0


@dataclass(slots=True)
class QuickIndexResult:
    url: str
    title: str = ""
    content: str = ""
    success: bool = False
    error: str = ""


async def _fetch_html(url: str, use_javascript: bool) -> str:
    if use_javascript:
        async with RenderedFetcher(
            RENDERED_TIMEOUT,
            settle_delay=RENDERED_SETTLE_DELAY,
            text_mode=True,
        ) as fetcher:
            return await fetcher.fetch(url)
    async with StaticFetcher(STATIC_TIMEOUT) as fetcher:
        return await fetcher.fetch(url)


async def quick_index_page(
    url: str,
    use_javascript: bool = False,
    *,
    services: "Services",
) -> QuickIndexResult:
    """
    Fetch, summarize and index one page.

    Never raises: any failure is logged and reported as ``success=False``.
    """
    try:
        html = await _fetch_html(url, use_javascript)
        summary = extract_summary(html, url)
        if not is_acceptable(summary.content):
            LOGGER.warning(
                "Quick index of %s found only %d characters", url, len(summary.content)
            )
            return QuickIndexResult(
                url=url, title=summary.title, content=summary.content, success=False
            )

        record = PageRecord(
            url=url,
            title=summary.title,
            content=summary.content,
            page_type=page_type_for(url),
            source_url=url,
        )
        stored = await index_page(services, record)
        LOGGER.info("Quick-indexed %s (%d vector(s))", url, stored)
        return QuickIndexResult(
            url=url, title=summary.title, content=summary.content, success=True
        )
    except Exception as exc:
        LOGGER.error("Quick index of %s failed: %s", url, exc)
        return QuickIndexResult(url=url, success=False, error=str(exc))
