"""MCP Server for sitechat.

Provides tools for:
- Opening a site (quick index + background crawl)
- Starting and polling background crawls
- Asking questions grounded in a site's indexed content
- Inspecting and clearing stored pages and vectors

Supports both STDIO and HTTP transports.

Usage:
    # STDIO (for Claude Desktop, etc.)
    python -m sitechat.mcp_server

    # HTTP (for remote access)
    python -m sitechat.mcp_server --transport http --port 8000

    # Or via FastMCP CLI
    fastmcp run sitechat/mcp_server.py:mcp --transport http --port 8000

Environment Variables:
    REDIS_URL, PINECONE_API_KEY, PINECONE_INDEX_NAME, MISTRAL_API_KEY
    (see sitechat.settings)
"""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from . import sessions
from .chat import ChatMessage, answer
from .document import CrawlOptions
from .jobs import CrawlRequestError, submit_crawl_job
from .services import Services
from .sessions import SiteOpenError, needs_javascript
from .settings import ConfigError, Settings, load_config
from .store import StatusTransitionError
from .vector_store import derive_namespace

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
LOGGER = logging.getLogger(__name__)

# Load .env before reading environment variables
load_config()

# Create the MCP server
mcp = FastMCP(
    name="Site Chat",
    instructions="""
    Turns a website into a queryable knowledge base.

    1. Indexing Tools:
       - open_site: Quick-index a homepage and start a background crawl
       - start_crawl: Start a background crawl with explicit limits
       - crawl_status: Poll the status record of a crawl

    2. Question Tool:
       - ask: Answer a question from the site's indexed content

    3. Maintenance Tools:
       - list_pages: Stored pages of a site
       - namespace_info: Vector namespace and record count of a site
       - clear_context: Delete every stored page, status and vector
    """,
)

_SERVICES: Optional[Services] = None


def get_services() -> Services:
    """Shared services, created on first use."""
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = Services.from_settings(Settings.from_env())
    return _SERVICES


def _dumps(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _error(message: str, **context: Any) -> str:
    LOGGER.error(message)
    return json.dumps({"error": message, **context}, ensure_ascii=False)


# =============================================================================
# INDEXING TOOLS
# =============================================================================


@mcp.tool
async def open_site(url: str) -> str:
    """
    Open a site for chat.

    On the first visit the homepage is indexed immediately and a background
    crawl (depth 2, 30 pages) is started. Later visits report progress.

    Args:
        url: Site URL; the scheme may be omitted (e.g. "example.com")

    Returns:
        JSON with url, session_id, greeting and status.
    """
    try:
        session = await sessions.open_site(url, services=get_services())
    except SiteOpenError as exc:
        return _error(str(exc), url=url)
    except ConfigError as exc:
        return _error(str(exc), url=url)
    except Exception as exc:
        return _error(f"Unexpected error: {exc}", url=url)

    return _dumps(
        {
            "url": session.url,
            "session_id": session.session_id,
            "greeting": session.greeting,
            "first_visit": session.first_visit,
            "use_javascript": session.use_javascript,
            "status": session.status,
        }
    )


@mcp.tool
async def start_crawl(
    url: str,
    session_id: str,
    max_depth: Optional[int] = None,
    max_pages: Optional[int] = None,
    use_javascript: Optional[bool] = None,
    force: bool = False,
) -> str:
    """
    Start a background crawl of a site and return immediately.

    Args:
        url: Seed URL (http or https)
        session_id: Chat session that requested the crawl
        max_depth: Maximum link depth (default: 2)
        max_pages: Maximum pages to index (default: 30)
        use_javascript: Render pages in a browser (default: detected from the URL)
        force: Replace a crawl of the same site that is still marked running

    Returns:
        JSON acknowledgement, or an error if a crawl of the site is already
        running; poll crawl_status for progress.
    """
    javascript = needs_javascript(url) if use_javascript is None else use_javascript
    options = CrawlOptions.for_background_job(
        max_depth=max_depth, max_pages=max_pages, use_javascript=javascript
    )
    try:
        await submit_crawl_job(
            url, session_id, options, services=get_services(), force=force
        )
    except CrawlRequestError as exc:
        return _error(str(exc), url=url)
    except StatusTransitionError as exc:
        return _error(f"Crawl not started: {exc}", url=url)
    except ConfigError as exc:
        return _error(str(exc), url=url)

    return _dumps({"success": True, "message": "Background crawl started", "url": url})


@mcp.tool
async def crawl_status(url: str) -> str:
    """
    Current status record of a crawl.

    Args:
        url: Seed URL the crawl was started with

    Returns:
        JSON with the status fields, or an error when no record exists.
    """
    try:
        status = await get_services().store.get_status(url)
    except ConfigError as exc:
        return _error(str(exc), url=url)
    if status is None:
        return _error("No crawl status found", url=url)
    return _dumps(status.to_dict())


# =============================================================================
# QUESTION TOOL
# =============================================================================


@mcp.tool
async def ask(
    url: str,
    question: str,
    history: Optional[List[Dict[str, str]]] = None,
) -> str:
    """
    Answer a question using only the site's indexed content.

    Args:
        url: Site URL that was opened or crawled
        question: The user's question
        history: Earlier turns as [{"role": "user"|"assistant", "content": "..."}]

    Returns:
        The answer text.
    """
    messages = [ChatMessage.from_dict(turn) for turn in history or []]
    messages.append(ChatMessage(role="user", content=question))
    try:
        return await answer(get_services(), url, messages)
    except ConfigError as exc:
        return _error(str(exc), url=url)
    except Exception as exc:
        return _error(f"Unexpected error: {exc}", url=url)


# =============================================================================
# MAINTENANCE TOOLS
# =============================================================================


@mcp.tool
async def list_pages(url: str, include_content: bool = False) -> str:
    """
    Pages stored for a site.

    Args:
        url: Site URL
        include_content: Include a 200-character content preview (default: false)
    """
    try:
        pages = await get_services().store.get_pages(url)
    except ConfigError as exc:
        return _error(str(exc), url=url)

    items = []
    for page in pages:
        item: Dict[str, Any] = {"url": page.url, "title": page.title, "pageType": page.page_type}
        if include_content:
            item["preview"] = page.content[:200]
        items.append(item)
    return _dumps({"url": url, "total": len(items), "pages": items})


@mcp.tool
async def namespace_info(url: str) -> str:
    """
    Vector namespace derived from a site URL and its record count.

    Args:
        url: Site URL
    """
    try:
        stats = await get_services().vectors.namespace_stats(url)
    except ConfigError as exc:
        return _error(str(exc), url=url, namespace=derive_namespace(url))
    return _dumps(stats)


@mcp.tool
async def clear_context() -> str:
    """Delete every stored page, crawl status, indexed site and vector namespace."""
    try:
        services = get_services()
        seeds = await services.store.clear_all()
        namespaces = await services.vectors.namespace_counts()
        for namespace in namespaces:
            await services.vectors.delete_namespace(namespace)
    except ConfigError as exc:
        return _error(str(exc))

    LOGGER.info("Cleared %d site(s) and %d namespace(s)", len(seeds), len(namespaces))
    return _dumps(
        {
            "success": True,
            "message": "All context cleared",
            "sites": seeds,
            "namespaces": sorted(namespaces),
        }
    )


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for running the MCP server."""
    parser = argparse.ArgumentParser(
        description="Run the sitechat MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    REDIS_URL            Redis URL (default: redis://localhost:6379/0)
    PINECONE_API_KEY     Pinecone API key
    PINECONE_INDEX_NAME  Pinecone index (default: chatbot)
    MISTRAL_API_KEY      Mistral API key

Examples:
    # STDIO transport (default, for Claude Desktop)
    python -m sitechat.mcp_server

    # HTTP transport (for remote access)
    python -m sitechat.mcp_server --transport http --port 8000
""",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to for HTTP transport (default: 8000)",
    )

    args = parser.parse_args()

    settings = Settings.from_env()
    LOGGER.info("Redis URL: %s", settings.redis_url)
    LOGGER.info("Pinecone index: %s", settings.pinecone_index_name)

    if args.transport == "http":
        LOGGER.info("Starting MCP server on http://%s:%d/mcp", args.host, args.port)
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        LOGGER.info("Starting MCP server with STDIO transport")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
