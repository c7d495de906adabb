"""Tests for sitechat.chat module."""

from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from sitechat import chat
from sitechat.chat import (
    ChatError,
    ChatMessage,
    _delta_content,
    answer,
    answer_stream,
    build_prompt,
    retrieve_context,
    stream_chat_completion,
)
from sitechat.document import PageRecord
from sitechat.settings import Settings

URL = "https://example.com"


def _sse(*tokens: str) -> str:
    events = [
        "data: " + json.dumps({"choices": [{"delta": {"content": token}}]})
        for token in tokens
    ]
    return "\n\n".join(events + ["data: [DONE]"]) + "\n\n"


@pytest.fixture
def mistral(monkeypatch):
    """Serve chat completions from an httpx.MockTransport."""
    state = {"status": 200, "body": _sse("Hello", " there"), "requests": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return httpx.Response(state["status"], text=state["body"])

    def factory(api_key, base_url="https://api.mistral.ai", timeout=30.0):
        return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(chat, "_get_mistral_client", factory)
    return state


async def _index_one(services, content: str = "The shop opens at nine every weekday.") -> None:
    await services.vectors.upsert(
        "example-com",
        [{"id": "v0", "values": [1.0], "metadata": {"title": "Hours", "content": content}}],
    )


class TestChatMessage:
    def test_from_dict(self):
        message = ChatMessage.from_dict({"role": "assistant", "content": "hi"})
        assert message == ChatMessage("assistant", "hi")

    def test_from_dict_defaults(self):
        assert ChatMessage.from_dict({}) == ChatMessage("user", "")


class TestRetrieveContext:
    @pytest.mark.asyncio
    async def test_uses_vector_matches(self, services, embedder):
        await _index_one(services)

        context = await retrieve_context(services, URL, "When does it open?")

        assert context == "### Hours\n\nThe shop opens at nine every weekday."
        assert embedder.calls == ["When does it open?"]

    @pytest.mark.asyncio
    async def test_falls_back_to_stored_pages(self, services):
        for name in ("a", "b", "c", "d"):
            await services.store.store_page(
                PageRecord(
                    url=f"{URL}/{name}",
                    title=name.upper(),
                    content=name * 3000,
                    page_type="Page",
                    source_url=URL,
                )
            )

        context = await retrieve_context(services, URL, "anything")

        sections = context.split("\n\n---\n\n")
        assert len(sections) == 3
        assert sections[0] == "### A\n\n" + "a" * 2000
        assert "### D" not in context

    @pytest.mark.asyncio
    async def test_nothing_indexed(self, services):
        assert await retrieve_context(services, URL, "anything") == ""


class TestBuildPrompt:
    def test_layout(self):
        history = [ChatMessage("user", f"q{i}") for i in range(7)]
        history.append(ChatMessage("assistant", "a7"))

        prompt = build_prompt(URL, "CONTEXT", "Final question?", history)

        assert prompt.startswith(f"You are analyzing: {URL}\n\nRELEVANT CONTENT:\nCONTEXT\n\n")
        assert "CONVERSATION HISTORY:\nUser: q3\nUser: q4\nUser: q5\nUser: q6\nAssistant: a7\n\n" in prompt
        assert "User: q2" not in prompt
        assert prompt.endswith(
            "USER QUESTION:\nFinal question?\n\n"
            "Provide a detailed answer based only on the content above:"
        )

    def test_context_truncated(self):
        prompt = build_prompt(URL, "c" * 9000, "q")
        assert "c" * 8000 in prompt
        assert "c" * 8001 not in prompt


class TestDeltaContent:
    def test_content(self):
        line = 'data: {"choices": [{"delta": {"content": "Hi"}}]}'
        assert _delta_content(line) == "Hi"

    @pytest.mark.parametrize(
        "line",
        [
            "",
            ": keep-alive",
            "data: [DONE]",
            "data: not json",
            'data: {"choices": []}',
            'data: {"choices": [{"delta": {"role": "assistant"}}]}',
        ],
    )
    def test_ignored(self, line):
        assert _delta_content(line) is None


class TestStreamChatCompletion:
    @pytest.mark.asyncio
    async def test_streams_tokens(self, mistral):
        settings = Settings(mistral_api_key="k", chat_model="mistral-small-latest")

        tokens: List[str] = [t async for t in stream_chat_completion("prompt", settings)]

        assert tokens == ["Hello", " there"]
        request = mistral["requests"][0]
        assert request.url.path == "/v1/chat/completions"
        body = json.loads(request.content)
        assert body == {
            "model": "mistral-small-latest",
            "messages": [{"role": "user", "content": "prompt"}],
            "stream": True,
        }

    @pytest.mark.asyncio
    async def test_http_error(self, mistral):
        mistral["status"] = 401
        mistral["body"] = "unauthorized"

        with pytest.raises(ChatError) as exc_info:
            async for _ in stream_chat_completion("prompt", Settings(mistral_api_key="k")):
                pass

        assert exc_info.value.status_code == 401
        assert str(exc_info.value) == "Mistral error: 401"


class TestAnswer:
    @pytest.mark.asyncio
    async def test_answer_streams_from_context(self, services, mistral):
        await _index_one(services)

        result = await answer(services, URL, [ChatMessage("user", "When does it open?")])

        assert result == "Hello there"
        prompt = json.loads(mistral["requests"][0].content)["messages"][0]["content"]
        assert "The shop opens at nine" in prompt
        assert "USER QUESTION:\nWhen does it open?" in prompt

    @pytest.mark.asyncio
    async def test_no_content_yet(self, services, mistral):
        result = await answer(services, URL, [ChatMessage("user", "Hello?")])

        assert result == f"I don't have any indexed content from {URL} yet."
        assert mistral["requests"] == []

    @pytest.mark.asyncio
    async def test_error_reported_in_band(self, services, mistral):
        await _index_one(services)
        mistral["status"] = 500

        tokens = [t async for t in answer_stream(services, URL, [ChatMessage("user", "q")])]

        assert tokens == ["Error: Mistral error: 500"]

    @pytest.mark.asyncio
    async def test_requires_a_message(self, services):
        with pytest.raises(ValueError):
            await answer(services, URL, [])
