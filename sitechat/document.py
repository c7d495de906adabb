"""Data structures shared by the crawl, index and status layers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class CrawlTarget:
    """Frontier entry: a URL and its hop count from the seed."""

    url: str
    depth: int


@dataclass(slots=True)
class PageRecord:
    """One accepted page produced by a crawl."""

    url: str
    title: str
    content: str
    page_type: str
    source_url: str
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "pageType": self.page_type,
            "sourceUrl": self.source_url,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageRecord":
        return cls(
            url=str(data["url"]),
            title=str(data.get("title") or ""),
            content=str(data.get("content") or ""),
            page_type=str(data.get("pageType") or "Page"),
            source_url=str(data.get("sourceUrl") or ""),
            timestamp=str(data.get("timestamp") or ""),
        )

    @classmethod
    def from_json(cls, raw: str) -> "PageRecord":
        return cls.from_dict(json.loads(raw))


@dataclass(slots=True)
class Chunk:
    """A bounded slice of page content, the unit of embedding."""

    text: str
    index: int
    source_url: str
    page_url: str
    title: str
    timestamp: str = field(default_factory=utc_timestamp)

    def metadata(self) -> Dict[str, Any]:
        """Metadata stored next to the chunk's vector."""
        return {
            "sourceUrl": self.source_url,
            "pageUrl": self.page_url,
            "title": self.title,
            "content": self.text,
            "chunkIndex": self.index,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class CrawlOptions:
    """Immutable per-job crawl configuration.

    ``delay`` and ``timeout`` are in seconds. When ``timeout`` is ``None``
    the fetch timeout depends on the fetch mode (see :attr:`fetch_timeout`).
    """

    max_depth: int = 2
    max_pages: int = 50
    delay: float = 1.0
    timeout: Optional[float] = None
    same_domain_only: bool = True
    use_javascript: bool = False

    @property
    def fetch_timeout(self) -> float:
        if self.timeout is not None:
            return self.timeout
        return 30.0 if self.use_javascript else 10.0

    @property
    def batch_size(self) -> int:
        # Rendered fetches are heavier.
        return 2 if self.use_javascript else 5

    @property
    def concurrency(self) -> int:
        return 1 if self.use_javascript else 2

    @classmethod
    def for_background_job(
        cls,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        use_javascript: bool = False,
    ) -> "CrawlOptions":
        """Options used for the background crawl that follows a quick index."""
        return cls(
            max_depth=2 if max_depth is None else max_depth,
            max_pages=30 if max_pages is None else max_pages,
            delay=1.0 if use_javascript else 0.5,
            timeout=15.0 if use_javascript else 5.0,
            same_domain_only=True,
            use_javascript=use_javascript,
        )
