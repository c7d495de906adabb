"""Selector tables and factory functions for Crawl4AI configurations."""

from __future__ import annotations

import logging
from typing import List

from crawl4ai import BrowserConfig, CrawlerRunConfig
from crawl4ai.async_configs import CacheMode

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Content landmarks, in priority order. The first one present wins.
MAIN_SELECTORS: List[str] = [
    "main",
    "article",
    "[role='main']",
    ".content",
    "#content",
    ".post-content",
    ".entry-content",
]

# Removed before structured extraction
NOISE_SELECTORS: List[str] = [
    "script",
    "style",
    "nav",
    "footer",
    "header",
    "iframe",
    "noscript",
    "[role='navigation']",
    ".ads",
    ".advertisement",
]

# Removed before quick-index summary extraction
QUICK_NOISE_SELECTORS: List[str] = [
    "script",
    "style",
    "noscript",
    "nav",
    "footer",
    "header",
]

# Landmarks whose links seed the first crawl wave
NAVIGATION_SELECTORS: List[str] = [
    "nav a",
    "header a",
    "[role='navigation'] a",
    ".menu a",
    ".navbar a",
]

ARTICLE_TITLE_SELECTORS: List[str] = [
    "article h1",
    ".story-title",
    ".post-title",
    ".entry-title",
]

CATEGORY_SELECTORS: List[str] = [
    ".breadcrumb",
    ".breadcrumbs",
    ".category",
    "[class*='category']",
]

TAG_SELECTORS: List[str] = [
    "a[href*='tag']",
    ".tag",
    ".badge",
    "[class*='tag']",
]

# Regions used by the quick-index summary
SUMMARY_SELECTORS: List[str] = [
    "main",
    "article",
    "[role='main']",
    ".content",
    "#content",
]

BROWSER_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]


def build_browser_config(
    *,
    text_mode: bool = False,
    user_agent: str = DEFAULT_USER_AGENT,
) -> BrowserConfig:
    """Headless browser settings shared by every rendered fetch of a job.

    ``text_mode`` disables images and other heavy resources; the quick
    index uses it because it only needs text.
    """
    return BrowserConfig(
        headless=True,
        use_persistent_context=False,
        viewport_width=1920,
        viewport_height=1080,
        user_agent=user_agent,
        text_mode=text_mode,
        extra_args=list(BROWSER_ARGS),
        verbose=False,
    )


def build_render_run_config(
    timeout: float,
    *,
    settle_delay: float = 2.0,
) -> CrawlerRunConfig:
    """RunConfig for a rendered fetch that only needs the settled DOM.

    Args:
        timeout: Navigation timeout in seconds.
        settle_delay: Seconds to wait after network idle so client-side
            rendering can finish.
    """
    return CrawlerRunConfig(
        verbose=False,
        wait_until="networkidle",
        page_timeout=int(timeout * 1000),
        delay_before_return_html=settle_delay,
        cache_mode=CacheMode.BYPASS,
    )
