"""Tests for sitechat.quick_index module."""

from __future__ import annotations

from typing import List

import pytest

from sitechat import quick_index
from sitechat.fetcher import FetchError
from sitechat.quick_index import quick_index_page
from sitechat.vector_store import derive_namespace

URL = "https://example.com"

HOMEPAGE = (
    "<html><head><title>Example Home</title>"
    '<meta name="description" content="Everything about examples.">'
    "</head><body><nav>Menu</nav><main>"
    + "Welcome to the example site, where every page is an example of something. " * 3
    + "</main></body></html>"
)


def _serve(monkeypatch, html=None, error=None):
    calls: List[tuple] = []

    async def fake_fetch(url: str, use_javascript: bool) -> str:
        calls.append((url, use_javascript))
        if error is not None:
            raise error
        return html

    monkeypatch.setattr(quick_index, "_fetch_html", fake_fetch)
    return calls


@pytest.mark.asyncio
async def test_indexes_homepage(monkeypatch, services, fake_index):
    calls = _serve(monkeypatch, HOMEPAGE)

    result = await quick_index_page(URL, services=services)

    assert result.success is True
    assert result.title == "Example Home"
    assert result.content.startswith("Everything about examples.\n\nWelcome")
    assert "Menu" not in result.content
    assert calls == [(URL, False)]

    record = await services.store.get_page(URL)
    assert record.source_url == URL
    assert record.page_type == "Homepage"
    assert await services.store.page_urls(URL) == [URL]
    assert len(fake_index.namespaces[derive_namespace(URL)]) == 1


@pytest.mark.asyncio
async def test_thin_page_is_not_indexed(monkeypatch, services, fake_index):
    _serve(monkeypatch, "<html><body><main>Hi</main></body></html>")

    result = await quick_index_page(URL, services=services)

    assert result.success is False
    assert result.content == "Hi"
    assert await services.store.get_page(URL) is None
    assert fake_index.upsert_calls == []


@pytest.mark.asyncio
async def test_fetch_failure_is_reported(monkeypatch, services):
    _serve(monkeypatch, error=FetchError("HTTP 503", url=URL, status_code=503))

    result = await quick_index_page(URL, use_javascript=True, services=services)

    assert result.success is False
    assert result.error == "HTTP 503"


@pytest.mark.asyncio
async def test_indexing_failure_is_reported(monkeypatch, services):
    from conftest import FakeEmbedder

    _serve(monkeypatch, HOMEPAGE)
    services.embedder = FakeEmbedder(fail_when=lambda text: True)

    result = await quick_index_page(URL, services=services)

    assert result.success is False
    assert "embedding service unavailable" in result.error


class _RecordingFetcher:
    created: List["_RecordingFetcher"] = []

    def __init__(self, timeout, **kwargs):
        self.timeout = timeout
        self.kwargs = kwargs
        _RecordingFetcher.created.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def fetch(self, url):
        return f"<html>{url}</html>"


@pytest.mark.asyncio
async def test_fetch_strategy_budgets(monkeypatch):
    _RecordingFetcher.created = []
    monkeypatch.setattr(quick_index, "StaticFetcher", _RecordingFetcher)
    monkeypatch.setattr(quick_index, "RenderedFetcher", _RecordingFetcher)

    assert await quick_index._fetch_html(URL, False) == f"<html>{URL}</html>"
    await quick_index._fetch_html(URL, True)

    static, rendered = _RecordingFetcher.created
    assert static.timeout == 10.0
    assert static.kwargs == {}
    assert rendered.timeout == 15.0
    assert rendered.kwargs == {"settle_delay": 3.0, "text_mode": True}
