"""Redis-backed crawl status records and page storage.

Keys:
    crawl-status:<seed>   hash, one :class:`CrawlStatus` per seed URL
    pages:<seed>          set of page URLs stored for a seed
    page:<page url>       JSON blob of a :class:`~sitechat.document.PageRecord`
    indexed-urls          set of seed URLs that have been opened

Status writes go through optimistic transactions (WATCH/MULTI) so a stale
writer can never move a finished record back to ``crawling``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Collection, Dict, List, Mapping, Optional

import redis.asyncio as redis

from .document import PageRecord, utc_timestamp

LOGGER = logging.getLogger(__name__)

INDEXED_URLS_KEY = "indexed-urls"


def status_key(seed_url: str) -> str:
    return f"crawl-status:{seed_url}"


def pages_key(seed_url: str) -> str:
    return f"pages:{seed_url}"


def page_key(page_url: str) -> str:
    return f"page:{page_url}"


class CrawlState(str, Enum):
    pending = "pending"
    crawling = "crawling"
    completed = "completed"
    failed = "failed"


class StatusRecordError(Exception):
    """Raised when a stored status hash cannot be parsed."""

    def __init__(self, message: str, seed_url: str = ""):
        self.seed_url = seed_url
        super().__init__(message)


class StatusTransitionError(Exception):
    """Raised when a status write is not allowed from the stored state."""

    def __init__(
        self,
        message: str,
        seed_url: str = "",
        current: Optional[CrawlState] = None,
    ):
        self.seed_url = seed_url
        self.current = current
        super().__init__(message)


def _parse_int(mapping: Mapping[str, Any], name: str) -> int:
    raw = mapping.get(name)
    if raw in (None, ""):
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise StatusRecordError(f"Field {name!r} is not an integer: {raw!r}") from exc


@dataclass(frozen=True)
class CrawlStatus:
    """Typed view of a ``crawl-status:<seed>`` hash.

    Terminal-only fields (``completed_at``, ``failed_at``, ``error``) stay
    ``None`` until the matching state is reached.
    """

    state: CrawlState
    session_id: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    total_pages: int = 0
    new_pages_indexed: int = 0
    error: Optional[str] = None
    homepage_indexed: bool = False

    @property
    def finished(self) -> bool:
        return self.state in (CrawlState.completed, CrawlState.failed)

    def age(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds since ``started_at``, or ``None`` if it is unset or unreadable."""
        if not self.started_at:
            return None
        try:
            started = datetime.fromisoformat(self.started_at)
        except ValueError:
            return None
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return ((now or datetime.now(timezone.utc)) - started).total_seconds()

    def to_mapping(self) -> Dict[str, str]:
        """Redis hash fields; unset optional fields are omitted."""
        mapping = {
            "status": self.state.value,
            "totalPages": str(self.total_pages),
            "newPagesIndexed": str(self.new_pages_indexed),
            "homepageIndexed": "true" if self.homepage_indexed else "false",
        }
        optional = {
            "sessionId": self.session_id,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "failedAt": self.failed_at,
            "error": self.error,
        }
        mapping.update({k: v for k, v in optional.items() if v is not None})
        return mapping

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "CrawlStatus":
        raw_state = mapping.get("status")
        try:
            state = CrawlState(raw_state)
        except ValueError as exc:
            raise StatusRecordError(f"Unknown crawl status {raw_state!r}") from exc
        return cls(
            state=state,
            session_id=mapping.get("sessionId") or None,
            started_at=mapping.get("startedAt") or None,
            completed_at=mapping.get("completedAt") or None,
            failed_at=mapping.get("failedAt") or None,
            total_pages=_parse_int(mapping, "totalPages"),
            new_pages_indexed=_parse_int(mapping, "newPagesIndexed"),
            error=mapping.get("error") or None,
            homepage_indexed=str(mapping.get("homepageIndexed", "")).lower() == "true",
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable form with the stored field names."""
        data: Dict[str, Any] = dict(self.to_mapping())
        data["totalPages"] = self.total_pages
        data["newPagesIndexed"] = self.new_pages_indexed
        data["homepageIndexed"] = self.homepage_indexed
        return data


# States from which a fresh record may replace the stored one.
_RESTARTABLE = frozenset(
    {None, CrawlState.pending, CrawlState.completed, CrawlState.failed}
)
_RUNNING = frozenset({CrawlState.crawling})

FieldBuilder = Callable[[Optional[CrawlStatus]], Dict[str, str]]


class SiteStore:
    """Async key-value operations used by the crawl pipeline."""

    def __init__(self, client: Any):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "SiteStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def aclose(self) -> None:
        await self.client.aclose()

    # -- status record ---------------------------------------------------------

    async def get_status(self, seed_url: str) -> Optional[CrawlStatus]:
        mapping = await self.client.hgetall(status_key(seed_url))
        if not mapping:
            return None
        try:
            return CrawlStatus.from_mapping(mapping)
        except StatusRecordError as exc:
            exc.seed_url = seed_url
            raise

    async def _write_status(
        self,
        seed_url: str,
        allowed: Collection[Optional[CrawlState]],
        build: FieldBuilder,
        *,
        fresh: bool,
        takeover: Optional[Callable[[CrawlStatus], bool]] = None,
        started_at: Optional[str] = None,
    ) -> CrawlStatus:
        key = status_key(seed_url)

        async def apply(pipe) -> CrawlStatus:
            stored = await pipe.hgetall(key)
            current: Optional[CrawlStatus] = None
            if stored:
                try:
                    current = CrawlStatus.from_mapping(stored)
                except StatusRecordError:
                    if not fresh:
                        raise
                    LOGGER.warning("Replacing malformed status record for %s", seed_url)
            state = current.state if current else None
            taken_over = (
                state not in allowed
                and current is not None
                and takeover is not None
                and takeover(current)
            )
            if taken_over:
                LOGGER.warning(
                    "Taking over crawl of %s started at %s",
                    seed_url,
                    current.started_at,
                )
            elif state not in allowed:
                raise StatusTransitionError(
                    f"Crawl status for {seed_url} is {state.value if state else 'missing'}",
                    seed_url=seed_url,
                    current=state,
                )
            replaced = current is not None and current.started_at != started_at
            if started_at is not None and replaced:
                raise StatusTransitionError(
                    f"Crawl of {seed_url} started at {started_at} was replaced",
                    seed_url=seed_url,
                    current=state,
                )

            fields = build(current)
            pipe.multi()
            if fresh:
                pipe.delete(key)
                merged = fields
            else:
                merged = {**stored, **fields}
            pipe.hset(key, mapping=fields)
            return CrawlStatus.from_mapping(merged)

        return await self.client.transaction(apply, key, value_from_callable=True)

    async def mark_pending(
        self,
        seed_url: str,
        session_id: str,
        *,
        homepage_indexed: bool = True,
    ) -> CrawlStatus:
        """Fresh ``pending`` record; refused while a crawl is running."""
        record = CrawlStatus(
            state=CrawlState.pending,
            session_id=session_id,
            homepage_indexed=homepage_indexed,
        )
        return await self._write_status(
            seed_url, _RESTARTABLE, lambda _: record.to_mapping(), fresh=True
        )

    async def begin_crawl(
        self,
        seed_url: str,
        session_id: str,
        *,
        force: bool = False,
        stale_after: Optional[float] = None,
    ) -> CrawlStatus:
        """Fresh ``crawling`` record with zeroed counters.

        A ``crawling`` record is only replaced when ``force`` is set or when
        it started more than ``stale_after`` seconds ago. Its job is assumed
        to be gone (cancelled, or its process died).
        """

        def takeover(current: CrawlStatus) -> bool:
            if current.state is not CrawlState.crawling:
                return False
            if force:
                return True
            age = current.age()
            return stale_after is not None and age is not None and age > stale_after

        def build(current: Optional[CrawlStatus]) -> Dict[str, str]:
            return CrawlStatus(
                state=CrawlState.crawling,
                session_id=session_id,
                started_at=utc_timestamp(),
                homepage_indexed=bool(current and current.homepage_indexed),
            ).to_mapping()

        return await self._write_status(
            seed_url, _RESTARTABLE, build, fresh=True, takeover=takeover
        )

    async def record_progress(
        self,
        seed_url: str,
        total_pages: int,
        new_pages_indexed: int,
        *,
        started_at: Optional[str] = None,
    ) -> CrawlStatus:
        """Counters of a running crawl.

        With ``started_at`` the write is refused once another crawl has
        replaced the one that started then.
        """
        fields = {
            "totalPages": str(total_pages),
            "newPagesIndexed": str(new_pages_indexed),
        }
        return await self._write_status(
            seed_url, _RUNNING, lambda _: fields, fresh=False, started_at=started_at
        )

    async def complete_crawl(
        self,
        seed_url: str,
        total_pages: int,
        new_pages_indexed: int,
        *,
        started_at: Optional[str] = None,
    ) -> CrawlStatus:
        fields = {
            "status": CrawlState.completed.value,
            "completedAt": utc_timestamp(),
            "totalPages": str(total_pages),
            "newPagesIndexed": str(new_pages_indexed),
        }
        return await self._write_status(
            seed_url, _RUNNING, lambda _: fields, fresh=False, started_at=started_at
        )

    async def fail_crawl(
        self,
        seed_url: str,
        error: str,
        *,
        started_at: Optional[str] = None,
    ) -> CrawlStatus:
        fields = {
            "status": CrawlState.failed.value,
            "failedAt": utc_timestamp(),
            "error": error,
        }
        return await self._write_status(
            seed_url, _RUNNING, lambda _: fields, fresh=False, started_at=started_at
        )

    # -- pages -----------------------------------------------------------------

    async def store_page(self, record: PageRecord) -> None:
        await self.client.set(page_key(record.url), record.to_json())
        await self.client.sadd(pages_key(record.source_url), record.url)

    async def get_page(self, page_url: str) -> Optional[PageRecord]:
        raw = await self.client.get(page_key(page_url))
        if raw is None:
            return None
        return PageRecord.from_json(raw)

    async def page_urls(self, seed_url: str) -> List[str]:
        return sorted(await self.client.smembers(pages_key(seed_url)))

    async def get_pages(
        self,
        seed_url: str,
        limit: Optional[int] = None,
    ) -> List[PageRecord]:
        """Stored pages for a seed, ordered by URL; unreadable blobs are skipped."""
        pages: List[PageRecord] = []
        for url in await self.page_urls(seed_url):
            if limit is not None and len(pages) >= limit:
                break
            try:
                record = await self.get_page(url)
            except (ValueError, KeyError) as exc:
                LOGGER.warning("Skipping unreadable page blob %s: %s", url, exc)
                continue
            if record is not None:
                pages.append(record)
        return pages

    async def delete_pages(self, seed_url: str) -> int:
        urls = await self.page_urls(seed_url)
        if urls:
            await self.client.delete(*(page_key(url) for url in urls))
        await self.client.delete(pages_key(seed_url))
        return len(urls)

    # -- indexed sites ---------------------------------------------------------

    async def mark_indexed(self, seed_url: str) -> None:
        await self.client.sadd(INDEXED_URLS_KEY, seed_url)

    async def is_indexed(self, seed_url: str) -> bool:
        return bool(await self.client.sismember(INDEXED_URLS_KEY, seed_url))

    async def indexed_urls(self) -> List[str]:
        return sorted(await self.client.smembers(INDEXED_URLS_KEY))

    async def clear_site(self, seed_url: str) -> int:
        """Delete a seed's pages, status record and indexed marker."""
        removed = await self.delete_pages(seed_url)
        await self.client.delete(status_key(seed_url))
        await self.client.srem(INDEXED_URLS_KEY, seed_url)
        LOGGER.info("Cleared %d page(s) for %s", removed, seed_url)
        return removed

    async def clear_all(self) -> List[str]:
        """Clear every indexed seed. Returns the seeds that were cleared."""
        seeds = await self.indexed_urls()
        for seed in seeds:
            await self.clear_site(seed)
        await self.client.delete(INDEXED_URLS_KEY)
        return seeds
