"""Turn a website into a queryable knowledge base.

This package crawls pages reachable from a seed URL, extracts structured
text, embeds it into a per-site vector namespace and tracks crawl progress
in a status record. It supports:

- Site crawling with depth/page limits (static HTTP or rendered browser)
- Quick indexing of a homepage before the full crawl
- Background crawl jobs observable through their status record
- Question answering grounded in the indexed content

Example usage:

    from sitechat import CrawlOptions, crawl_site_async

    # Crawl only
    result = await crawl_site_async(
        "https://example.com",
        CrawlOptions(max_depth=1, max_pages=10),
    )
    for page in result.pages:
        print(page.page_type, page.url, page.title)

    # Crawl and index, tracking status in Redis
    from sitechat import Services, run_crawl_job

    services = Services.from_settings()
    await run_crawl_job("https://example.com", "session_1", services=services)
    status = await services.store.get_status("https://example.com")
    print(status.state, status.new_pages_indexed)
"""

from __future__ import annotations

from .chunker import chunk_text
from .document import Chunk, CrawlOptions, CrawlTarget, PageRecord
from .embeddings import EmbeddingError, MistralEmbeddings
from .extractor import ExtractedPage, extract_page, page_type_for
from .fetcher import FetchError
from .indexer import index_page, index_page_vectors
from .jobs import CrawlRequestError, run_crawl_job, start_crawl_job, submit_crawl_job
from .quick_index import QuickIndexResult, quick_index_page
from .services import Services
from .site import SiteCrawlResult, crawl_site, crawl_site_async
from .store import CrawlState, CrawlStatus, SiteStore, StatusTransitionError
from .vector_store import VectorIndex, derive_namespace

__all__ = [
    # Data model
    "Chunk",
    "CrawlOptions",
    "CrawlTarget",
    "PageRecord",
    "SiteCrawlResult",
    "CrawlState",
    "CrawlStatus",
    # Crawl
    "crawl_site",
    "crawl_site_async",
    "extract_page",
    "page_type_for",
    "ExtractedPage",
    "FetchError",
    # Index
    "chunk_text",
    "derive_namespace",
    "index_page",
    "index_page_vectors",
    "quick_index_page",
    "QuickIndexResult",
    "MistralEmbeddings",
    "EmbeddingError",
    "VectorIndex",
    # Jobs and storage
    "run_crawl_job",
    "start_crawl_job",
    "submit_crawl_job",
    "CrawlRequestError",
    "Services",
    "SiteStore",
    "StatusTransitionError",
    # MCP Server
    "mcp",
]


def get_mcp_server():
    """Get the MCP server instance (lazy import to avoid dependency if not needed)."""
    from .mcp_server import mcp

    return mcp


# Lazy import for mcp to avoid requiring fastmcp if not used
def __getattr__(name):
    if name == "mcp":
        from .mcp_server import mcp

        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
