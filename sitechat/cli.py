"""Command-line interface for sitechat."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .chat import ChatMessage, answer_stream
from .document import CrawlOptions
from .jobs import run_crawl_job, validate_crawl_request
from .services import Services
from .sessions import needs_javascript, open_site, session_id_for
from .settings import Settings, load_config
from .store import CrawlState, SiteStore


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _format_status(url: str, status: Optional[Dict[str, Any]]) -> str:
    if status is None:
        return f"No crawl status for {url}"
    lines = [f"# {url}", f"status: {status['status']}"]
    for key in ("startedAt", "completedAt", "failedAt"):
        if key in status:
            lines.append(f"{key}: {status[key]}")
    lines.append(f"pages: {status['newPagesIndexed']}/{status['totalPages']} indexed")
    if "error" in status:
        lines.append(f"error: {status['error']}")
    return "\n".join(lines)


# =============================================================================
# ARGUMENTS
# =============================================================================


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sitechat",
        description="Crawl a website into a vector index and ask questions about it.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Index a homepage, then crawl the rest of the site
  sitechat open example.com

  # Crawl with explicit limits
  sitechat crawl https://example.com --max-depth 1 --max-pages 10

  # Poll the crawl status
  sitechat status https://example.com --json

  # Ask a question
  sitechat ask https://example.com "What does this site sell?"

  # Delete every stored page, status and vector
  sitechat clear --yes
""",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    open_parser = subparsers.add_parser(
        "open", help="Quick-index a site's homepage and crawl the rest on first visit"
    )
    open_parser.add_argument("url", help="Site URL (scheme optional)")

    crawl_parser = subparsers.add_parser("crawl", help="Crawl and index a site")
    crawl_parser.add_argument("url", help="Seed URL")
    crawl_parser.add_argument(
        "--session-id",
        default=None,
        help="Session id to record (default: derived from the URL)",
    )
    crawl_parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        help="Maximum link depth (default: 2)",
    )
    crawl_parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Maximum pages to index (default: 30)",
    )
    javascript = crawl_parser.add_mutually_exclusive_group()
    javascript.add_argument(
        "--javascript",
        dest="use_javascript",
        action="store_true",
        default=None,
        help="Render pages in a headless browser",
    )
    javascript.add_argument(
        "--no-javascript",
        dest="use_javascript",
        action="store_false",
        help="Fetch pages with plain HTTP",
    )
    crawl_parser.add_argument(
        "--force",
        action="store_true",
        help="Replace a crawl of the same site that is still marked running",
    )

    status_parser = subparsers.add_parser("status", help="Show a crawl's status")
    status_parser.add_argument("url", help="Seed URL")

    ask_parser = subparsers.add_parser("ask", help="Ask a question about a site")
    ask_parser.add_argument("url", help="Site URL")
    ask_parser.add_argument("question", help="Question to answer")

    pages_parser = subparsers.add_parser("pages", help="List stored pages of a site")
    pages_parser.add_argument("url", help="Site URL")

    clear_parser = subparsers.add_parser("clear", help="Delete all stored context")
    clear_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm deletion",
    )

    for sub in (open_parser, crawl_parser, status_parser, pages_parser, clear_parser):
        sub.add_argument(
            "--json",
            action="store_true",
            dest="json_output",
            help="Output as JSON",
        )

    return parser.parse_args(argv)


# =============================================================================
# COMMANDS
# =============================================================================


async def _run_open(args: argparse.Namespace, services: Services) -> int:
    session = await open_site(args.url, services=services, start_background=False)
    if not args.json_output:
        print(session.greeting)
    if session.first_visit:
        await run_crawl_job(
            session.url,
            session.session_id,
            CrawlOptions.for_background_job(use_javascript=session.use_javascript),
            services=services,
        )
    status = await services.store.get_status(session.url)
    data = status.to_dict() if status else None
    if args.json_output:
        _print_json(
            {
                "url": session.url,
                "session_id": session.session_id,
                "greeting": session.greeting,
                "status": data,
            }
        )
    elif session.first_visit:
        print(_format_status(session.url, data))
    if session.first_visit and (status is None or status.state is not CrawlState.completed):
        return 1
    return 0


async def _run_crawl(args: argparse.Namespace, services: Services) -> int:
    session_id = args.session_id or session_id_for(args.url.strip())
    seed = validate_crawl_request(args.url, session_id)
    use_javascript = (
        needs_javascript(seed) if args.use_javascript is None else args.use_javascript
    )
    options = CrawlOptions.for_background_job(
        max_depth=args.max_depth,
        max_pages=args.max_pages,
        use_javascript=use_javascript,
    )
    logging.info("Crawling %s (javascript=%s)", seed, use_javascript)
    await run_crawl_job(seed, session_id, options, services=services, force=args.force)

    status = await services.store.get_status(seed)
    data = status.to_dict() if status else None
    if args.json_output:
        _print_json({"url": seed, "status": data})
    else:
        print(_format_status(seed, data))
    return 0 if status is not None and status.state is CrawlState.completed else 1


async def _run_status(args: argparse.Namespace, store: SiteStore) -> int:
    status = await store.get_status(args.url)
    data = status.to_dict() if status else None
    if args.json_output:
        _print_json({"url": args.url, "status": data})
    else:
        print(_format_status(args.url, data))
    return 0 if status is not None else 1


async def _run_ask(args: argparse.Namespace, services: Services) -> int:
    messages = [ChatMessage(role="user", content=args.question)]
    async for token in answer_stream(services, args.url, messages):
        sys.stdout.write(token)
        sys.stdout.flush()
    sys.stdout.write("\n")
    return 0


async def _run_pages(args: argparse.Namespace, store: SiteStore) -> int:
    pages = await store.get_pages(args.url)
    if args.json_output:
        _print_json({"url": args.url, "pages": [page.to_dict() for page in pages]})
    else:
        for page in pages:
            print(f"{page.page_type:<10} {page.url}  {page.title}")
        logging.info("%d page(s) stored for %s", len(pages), args.url)
    return 0


async def _run_clear(args: argparse.Namespace, services: Services) -> int:
    if not args.yes:
        logging.error("Refusing to clear without --yes")
        return 2
    seeds = await services.store.clear_all()
    namespaces = await services.vectors.namespace_counts()
    for namespace in namespaces:
        await services.vectors.delete_namespace(namespace)
    if args.json_output:
        _print_json({"sites": seeds, "namespaces": sorted(namespaces)})
    else:
        print(f"Cleared {len(seeds)} site(s) and {len(namespaces)} namespace(s)")
    return 0


_COMMANDS = {
    "open": _run_open,
    "crawl": _run_crawl,
    "ask": _run_ask,
    "clear": _run_clear,
}

# Commands that only read Redis and need no API keys.
_STORE_COMMANDS = {
    "status": _run_status,
    "pages": _run_pages,
}


def _build_services() -> Services:
    return Services.from_settings(Settings.from_env())


def _build_store() -> SiteStore:
    return SiteStore.from_url(Settings.from_env().redis_url)


async def _run_async(args: argparse.Namespace) -> int:
    if args.command in _STORE_COMMANDS:
        store = _build_store()
        try:
            return await _STORE_COMMANDS[args.command](args, store)
        finally:
            await store.aclose()

    services = _build_services()
    try:
        return await _COMMANDS[args.command](args, services)
    finally:
        await services.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    load_config()

    try:
        return asyncio.run(_run_async(args))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except Exception as exc:
        logging.error("Error: %s", exc)
        if args.verbose:
            logging.exception("Full traceback:")
        return 1


if __name__ == "__main__":
    sys.exit(main())
