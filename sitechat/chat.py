"""Answer questions about an indexed site.

Context comes from the site's vector namespace, or from the stored pages
when no vectors match. The answer is streamed from Mistral's chat API::

    async for token in answer_stream(services, "https://example.com", messages):
        print(token, end="")
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from .embeddings import _get_mistral_client
from .settings import Settings
from .vector_store import derive_namespace

if TYPE_CHECKING:
    from .services import Services

LOGGER = logging.getLogger(__name__)

MAX_CONTEXT_LENGTH = 8000
FALLBACK_PAGE_COUNT = 3
FALLBACK_PAGE_LENGTH = 2000
HISTORY_TURNS = 5
CONTEXT_SEPARATOR = "\n\n---\n\n"


class ChatError(Exception):
    """Raised when the chat-completion call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(slots=True)
class ChatMessage:
    role: str  # user, assistant, system
    content: str

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "ChatMessage":
        return cls(role=str(data.get("role", "user")), content=str(data.get("content", "")))


async def retrieve_context(
    services: "Services",
    site_url: str,
    question: str,
    top_k: int = 5,
) -> str:
    """Context block for a question; empty when nothing is indexed."""
    vector = await services.embedder.embed(question)
    matches = await services.vectors.query(derive_namespace(site_url), vector, top_k)
    LOGGER.debug("Vector query for %s returned %d match(es)", site_url, len(matches))
    if matches:
        return CONTEXT_SEPARATOR.join(
            f"### {match.metadata.get('title', '')}\n\n{match.metadata.get('content', '')}"
            for match in matches
        )

    pages = await services.store.get_pages(site_url, limit=FALLBACK_PAGE_COUNT)
    return CONTEXT_SEPARATOR.join(
        f"### {page.title}\n\n{page.content[:FALLBACK_PAGE_LENGTH]}" for page in pages
    )


def build_prompt(
    site_url: str,
    context: str,
    question: str,
    history: Sequence[ChatMessage] = (),
) -> str:
    transcript = "\n".join(
        f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}"
        for message in list(history)[-HISTORY_TURNS:]
    )
    return (
        f"You are analyzing: {site_url}\n\n"
        f"RELEVANT CONTENT:\n{context[:MAX_CONTEXT_LENGTH]}\n\n"
        f"CONVERSATION HISTORY:\n{transcript}\n\n"
        f"USER QUESTION:\n{question}\n\n"
        "Provide a detailed answer based only on the content above:"
    )


def _delta_content(line: str) -> Optional[str]:
    """Content delta carried by one server-sent-events line, if any."""
    if not line.startswith("data: "):
        return None
    data = line[len("data: ") :].strip()
    if not data or data == "[DONE]":
        return None
    try:
        parsed = json.loads(data)
        return parsed["choices"][0]["delta"].get("content") or None
    except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
        LOGGER.warning("Skipping malformed stream event: %s", exc)
        return None


async def stream_chat_completion(
    prompt: str,
    settings: Settings,
) -> AsyncIterator[str]:
    """Stream content deltas of a Mistral chat completion.

    Raises:
        ChatError: On HTTP or network errors.
    """
    settings.require("mistral_api_key")
    payload = {
        "model": settings.chat_model,
        "messages": [{"role": "user", "content": prompt}],
        "stream": True,
    }
    try:
        async with _get_mistral_client(
            settings.mistral_api_key or "", settings.mistral_base_url, timeout=60.0
        ) as client:
            async with client.stream("POST", "/v1/chat/completions", json=payload) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise ChatError(
                        f"Mistral error: {response.status_code}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    content = _delta_content(line)
                    if content:
                        yield content
    except httpx.HTTPError as exc:
        raise ChatError(f"Request failed: {exc}") from exc


async def answer_stream(
    services: "Services",
    site_url: str,
    messages: Sequence[ChatMessage],
) -> AsyncIterator[str]:
    """Stream an answer to the last message, grounded in the site's content.

    Errors are reported in-band as a single ``Error: ...`` message.
    """
    if not messages:
        raise ValueError("At least one message is required")
    question = messages[-1].content

    context = await retrieve_context(services, site_url, question)
    if not context:
        yield f"I don't have any indexed content from {site_url} yet."
        return

    prompt = build_prompt(site_url, context, question, messages[:-1])
    try:
        async for token in stream_chat_completion(prompt, services.settings):
            yield token
    except ChatError as exc:
        LOGGER.error("Chat completion for %s failed: %s", site_url, exc)
        yield f"Error: {exc}"


async def answer(
    services: "Services",
    site_url: str,
    messages: Sequence[ChatMessage],
) -> str:
    """Collect :func:`answer_stream` into one string."""
    parts: List[str] = [token async for token in answer_stream(services, site_url, messages)]
    return "".join(parts)
