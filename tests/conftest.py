"""Shared fixtures and strict test-accounting guardrails."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Union

import pytest
from redis.exceptions import WatchError

from sitechat.embeddings import EmbeddingError
from sitechat.fetcher import FetchError
from sitechat.services import Services
from sitechat.settings import Settings
from sitechat.store import SiteStore
from sitechat.vector_store import VectorIndex


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakePipeline:
    """Just enough of redis.asyncio's Pipeline for WATCH/MULTI transactions."""

    def __init__(self, redis: "FakeRedis", watches: Sequence[str] = ()):
        self.redis = redis
        self.queued: List[tuple] = []
        self.in_multi = False
        self.watched = {key: redis.versions.get(key, 0) for key in watches}

    async def hgetall(self, key: str) -> Dict[str, str]:
        return await self.redis.hgetall(key)

    def multi(self) -> None:
        self.in_multi = True

    def delete(self, *keys: str) -> "FakePipeline":
        self.queued.append(("delete", keys, {}))
        return self

    def hset(self, key: str, mapping: Optional[Dict[str, str]] = None) -> "FakePipeline":
        self.queued.append(("hset", (key,), {"mapping": mapping}))
        return self

    async def execute(self) -> List[Any]:
        changed = [
            key for key, version in self.watched.items()
            if self.redis.versions.get(key, 0) != version
        ]
        if changed:
            self.queued.clear()
            raise WatchError(f"Watched variable changed: {changed}")
        results = []
        for name, args, kwargs in self.queued:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.queued.clear()
        return results


class FakeRedis:
    def __init__(self):
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.strings: Dict[str, str] = {}
        self.sets: Dict[str, set] = {}
        self.versions: Dict[str, int] = {}
        self.closed = False
        # Awaited once between a transaction's reads and its EXEC.
        self.before_exec: Optional[Callable[[], Awaitable[Any]]] = None
        self.watch_retries = 0

    def _touch(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def hset(self, key: str, mapping: Optional[Dict[str, str]] = None) -> int:
        target = self.hashes.setdefault(key, {})
        target.update({k: str(v) for k, v in (mapping or {}).items()})
        self._touch(key)
        return len(mapping or {})

    async def set(self, key: str, value: str) -> bool:
        self.strings[key] = value
        self._touch(key)
        return True

    async def get(self, key: str) -> Optional[str]:
        return self.strings.get(key)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            for store in (self.hashes, self.strings, self.sets):
                if key in store:
                    del store[key]
                    removed += 1
                    self._touch(key)
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        target = self.sets.setdefault(key, set())
        before = len(target)
        target.update(members)
        return len(target) - before

    async def smembers(self, key: str) -> set:
        return set(self.sets.get(key, set()))

    async def sismember(self, key: str, member: str) -> bool:
        return member in self.sets.get(key, set())

    async def srem(self, key: str, *members: str) -> int:
        target = self.sets.get(key, set())
        removed = len(target & set(members))
        target.difference_update(members)
        return removed

    async def transaction(
        self,
        func: Callable[[FakePipeline], Any],
        *watches: str,
        value_from_callable: bool = False,
    ) -> Any:
        while True:
            pipe = FakePipeline(self, watches)
            value = func(pipe)
            if inspect.isawaitable(value):
                value = await value
            if self.before_exec is not None:
                hook, self.before_exec = self.before_exec, None
                await hook()
            try:
                results = await pipe.execute()
            except WatchError:
                self.watch_retries += 1
                continue
            return value if value_from_callable else results

    async def aclose(self) -> None:
        self.closed = True


class FakeIndex:
    """Synchronous stand-in for a Pinecone index."""

    def __init__(self):
        self.namespaces: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.upsert_calls: List[int] = []

    def upsert(self, vectors: Sequence[Dict[str, Any]], namespace: str = "") -> Dict[str, int]:
        self.upsert_calls.append(len(vectors))
        target = self.namespaces.setdefault(namespace, {})
        for record in vectors:
            target[record["id"]] = record
        return {"upserted_count": len(vectors)}

    def query(
        self,
        vector: Sequence[float],
        top_k: int = 5,
        include_metadata: bool = False,
        namespace: str = "",
    ) -> Dict[str, Any]:
        records = list(self.namespaces.get(namespace, {}).values())[:top_k]
        return {
            "matches": [
                {"id": record["id"], "score": 0.9, "metadata": record["metadata"]}
                for record in records
            ]
        }

    def delete(self, delete_all: bool = False, namespace: str = "") -> Dict[str, Any]:
        if delete_all:
            self.namespaces.pop(namespace, None)
        return {}

    def describe_index_stats(self) -> Dict[str, Any]:
        return {
            "namespaces": {
                name: {"vector_count": len(records)}
                for name, records in self.namespaces.items()
            }
        }


class FakeEmbedder:
    def __init__(self, fail_when: Optional[Callable[[str], bool]] = None):
        self.fail_when = fail_when
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail_when is not None and self.fail_when(text):
            raise EmbeddingError("embedding service unavailable", status_code=503)
        return [float(len(text)), 1.0, 0.0]


class FakeFetcher:
    """Serves canned HTML by URL; anything else is a 404."""

    def __init__(self, pages: Optional[Dict[str, Union[str, Exception]]] = None):
        self.pages: Dict[str, Union[str, Exception]] = dict(pages or {})
        self.calls: List[str] = []
        self.entered = 0
        self.exited = 0

    async def __aenter__(self) -> "FakeFetcher":
        self.entered += 1
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.exited += 1

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise FetchError("HTTP 404", url=url, status_code=404)
        if isinstance(page, Exception):
            raise page
        return page


def build_page(
    title: str,
    paragraphs: Iterable[str] = (),
    links: Iterable[str] = (),
    nav_links: Iterable[str] = (),
) -> str:
    nav = "".join(f'<a href="{href}">{href}</a>' for href in nav_links)
    body = "".join(f"<p>{text}</p>" for text in paragraphs)
    anchors = "".join(f'<li><a href="{href}">Link to {href}</a></li>' for href in links)
    return (
        f"<html><head><title>{title}</title></head><body>"
        f"<nav>{nav}</nav>"
        f"<main><h1>{title}</h1>{body}<ul>{anchors}</ul></main>"
        "</body></html>"
    )


LONG_TEXT = (
    "This paragraph is comfortably long enough to survive every content "
    "filter the extractor applies to page text."
)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def services(fake_redis: FakeRedis, fake_index: FakeIndex, embedder: FakeEmbedder) -> Services:
    return Services(
        store=SiteStore(fake_redis),
        vectors=VectorIndex(fake_index),
        embedder=embedder,
        settings=Settings(mistral_api_key="test-key"),
    )


@pytest.fixture
def fake_fetcher(monkeypatch: pytest.MonkeyPatch) -> FakeFetcher:
    """Route every crawl's fetches to an in-memory site."""
    fetcher = FakeFetcher()
    monkeypatch.setattr(
        "sitechat.site.open_fetcher",
        lambda use_javascript, timeout, **kwargs: fetcher,
    )
    return fetcher


@pytest.fixture
def page_builder() -> Callable[..., str]:
    return build_page


@pytest.fixture
def long_text() -> str:
    return LONG_TEXT


# ---------------------------------------------------------------------------
# Strict accounting: no skipped, deselected or xfail tests
# ---------------------------------------------------------------------------


@dataclass
class _TestAccounting:
    deselected: int = 0
    skipped: int = 0
    xfailed: int = 0
    xpassed: int = 0


_ACCOUNTING = _TestAccounting()


def pytest_deselected(items):  # pragma: no cover - pytest hook
    _ACCOUNTING.deselected += len(items)


def pytest_runtest_logreport(report):  # pragma: no cover - pytest hook
    if report.when not in {"setup", "call"}:
        return

    if getattr(report, "wasxfail", False):
        if report.outcome == "skipped":
            _ACCOUNTING.xfailed += 1
        elif report.outcome == "passed":
            _ACCOUNTING.xpassed += 1
        return

    if report.outcome == "skipped":
        _ACCOUNTING.skipped += 1


def pytest_sessionfinish(session, exitstatus):  # pragma: no cover - pytest hook
    violations = [
        f"{name}={count}"
        for name, count in vars(_ACCOUNTING).items()
        if count
    ]
    if not violations:
        return

    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.write_sep(
            "=",
            "Strict guard failed: test accounting violations detected "
            f"({', '.join(violations)})",
        )
    session.exitstatus = 1
