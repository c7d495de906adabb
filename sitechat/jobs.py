"""Background crawl jobs: crawl a site, index new pages, track status.

A job is fire-and-forget. Its only observable effects are the status
record (``crawl-status:<seed>``) and the stored pages and vectors::

    task = start_crawl_job("https://example.com", "session_...", services=services)
    ...
    status = await services.store.get_status("https://example.com")
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Coroutine, List, Optional, Set
from urllib.parse import urlparse

from .document import CrawlOptions, PageRecord
from .indexer import index_page
from .links import normalize_url
from .site import crawl_site_async
from .store import CrawlStatus, SiteStore, StatusTransitionError

if TYPE_CHECKING:
    from .services import Services

LOGGER = logging.getLogger(__name__)

INDEX_BATCH_SIZE = 5

# Strong references so running jobs are not garbage-collected.
_RUNNING_JOBS: Set["asyncio.Task[None]"] = set()


class CrawlRequestError(ValueError):
    """Raised when a crawl request is rejected before a job starts."""

    def __init__(self, message: str, field: str = ""):
        self.field = field
        super().__init__(message)


def validate_crawl_request(url: Optional[str], session_id: Optional[str]) -> str:
    """Check a submission and return the stripped seed URL."""
    if not url or not url.strip():
        raise CrawlRequestError("URL is required", field="url")
    if not session_id or not session_id.strip():
        raise CrawlRequestError("Session ID is required", field="sessionId")
    seed = url.strip()
    parsed = urlparse(seed)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise CrawlRequestError(f"Invalid URL: {seed}", field="url")
    return seed


async def _index_batch(services: "Services", batch: List[PageRecord]) -> int:
    results = await asyncio.gather(
        *(index_page(services, page) for page in batch),
        return_exceptions=True,
    )
    indexed = 0
    for page, result in zip(batch, results):
        if isinstance(result, Exception):
            LOGGER.warning("Failed to index %s: %s", page.url, result)
        elif isinstance(result, BaseException):
            raise result
        else:
            indexed += 1
    return indexed


async def _mark_failed(
    store: SiteStore, seed_url: str, error: str, started_at: Optional[str]
) -> None:
    try:
        await store.fail_crawl(seed_url, error, started_at=started_at)
    except StatusTransitionError as exc:
        LOGGER.warning("Could not mark %s failed: %s", seed_url, exc)


async def claim_crawl(
    seed_url: str,
    session_id: str,
    *,
    services: "Services",
    force: bool = False,
) -> CrawlStatus:
    """Write the fresh ``crawling`` record a job runs under.

    Raises:
        StatusTransitionError: If a live crawl of the seed already holds it.
    """
    return await services.store.begin_crawl(
        seed_url,
        session_id,
        force=force,
        stale_after=services.settings.crawl_stale_after,
    )


async def _crawl_and_index(
    seed_url: str,
    options: CrawlOptions,
    services: "Services",
    claim: CrawlStatus,
) -> None:
    store = services.store
    started_at = claim.started_at
    try:
        result = await crawl_site_async(seed_url, options)

        # The homepage was already indexed by the quick index.
        seed_key = normalize_url(seed_url)
        new_pages = [page for page in result.pages if page.url != seed_key]
        total = len(result.pages)
        LOGGER.info(
            "Crawl of %s found %d page(s), %d new", seed_url, total, len(new_pages)
        )

        indexed = 0
        for start in range(0, len(new_pages), INDEX_BATCH_SIZE):
            batch = new_pages[start : start + INDEX_BATCH_SIZE]
            indexed += await _index_batch(services, batch)
            await store.record_progress(seed_url, total, indexed, started_at=started_at)

        await store.complete_crawl(seed_url, total, indexed, started_at=started_at)
        LOGGER.info("Crawl of %s completed: %d/%d page(s) indexed", seed_url, indexed, total)
    except asyncio.CancelledError:
        LOGGER.warning("Crawl of %s cancelled", seed_url)
        await _mark_failed(store, seed_url, "cancelled", started_at)
        raise
    except Exception as exc:
        LOGGER.error("Crawl of %s failed: %s", seed_url, exc)
        await _mark_failed(store, seed_url, str(exc) or type(exc).__name__, started_at)


async def run_crawl_job(
    seed_url: str,
    session_id: str,
    options: Optional[CrawlOptions] = None,
    *,
    services: "Services",
    force: bool = False,
) -> None:
    """Run one crawl job to completion, recording progress in its status.

    A job that is cancelled marks its record ``failed`` before re-raising,
    so the seed can be crawled again.
    """
    try:
        claim = await claim_crawl(seed_url, session_id, services=services, force=force)
    except StatusTransitionError as exc:
        LOGGER.warning("Not starting crawl of %s: %s", seed_url, exc)
        return
    await _crawl_and_index(
        seed_url, options or CrawlOptions.for_background_job(), services, claim
    )


def _forget(task: "asyncio.Task[None]") -> None:
    _RUNNING_JOBS.discard(task)
    if not task.cancelled() and task.exception() is not None:
        LOGGER.error("Crawl job crashed: %s", task.exception())


def _spawn(seed: str, coro: Coroutine[Any, Any, None]) -> "asyncio.Task[None]":
    task = asyncio.create_task(coro, name=f"crawl:{seed}")
    _RUNNING_JOBS.add(task)
    task.add_done_callback(_forget)
    LOGGER.info("Background crawl started for %s", seed)
    return task


def start_crawl_job(
    url: Optional[str],
    session_id: Optional[str],
    options: Optional[CrawlOptions] = None,
    *,
    services: "Services",
) -> "asyncio.Task[None]":
    """Validate a request and start its job in the background.

    Must be called from a running event loop. Returns immediately; a
    crawl that is already running is reported only in the log.

    Raises:
        CrawlRequestError: If the URL or session id is missing or invalid.
    """
    seed = validate_crawl_request(url, session_id)
    return _spawn(seed, run_crawl_job(seed, session_id or "", options, services=services))


async def submit_crawl_job(
    url: Optional[str],
    session_id: Optional[str],
    options: Optional[CrawlOptions] = None,
    *,
    services: "Services",
    force: bool = False,
) -> "asyncio.Task[None]":
    """Claim the status record, then crawl in the background.

    Unlike :func:`start_crawl_job` a refused crawl is raised to the caller.

    Raises:
        CrawlRequestError: If the URL or session id is missing or invalid.
        StatusTransitionError: If a crawl of the seed is already running.
    """
    seed = validate_crawl_request(url, session_id)
    claim = await claim_crawl(seed, session_id or "", services=services, force=force)
    return _spawn(
        seed,
        _crawl_and_index(
            seed, options or CrawlOptions.for_background_job(), services, claim
        ),
    )


def running_jobs() -> List["asyncio.Task[None]"]:
    return [task for task in _RUNNING_JOBS if not task.done()]
