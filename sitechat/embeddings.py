"""Mistral embeddings client.

Public API::

    from sitechat.embeddings import MistralEmbeddings

    embedder = MistralEmbeddings(api_key="...")
    vector = await embedder.embed("Some page text")
"""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from .settings import Settings

LOGGER = logging.getLogger(__name__)

MAX_EMBEDDING_INPUT = 8000


class EmbeddingError(Exception):
    """Raised when the embedding service call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def _get_mistral_client(
    api_key: str,
    base_url: str = "https://api.mistral.ai",
    timeout: float = 30.0,
) -> httpx.AsyncClient:
    """Create an httpx async client for the Mistral API."""
    return httpx.AsyncClient(
        base_url=base_url,
        headers={
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        },
        timeout=timeout,
    )


class MistralEmbeddings:
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "mistral-embed",
        base_url: str = "https://api.mistral.ai",
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url

    @classmethod
    def from_settings(cls, settings: Settings) -> "MistralEmbeddings":
        settings.require("mistral_api_key")
        return cls(
            settings.mistral_api_key or "",
            model=settings.embed_model,
            base_url=settings.mistral_base_url,
        )

    async def embed(self, text: str) -> List[float]:
        """Embed ``text`` (truncated to the service input limit).

        Raises:
            EmbeddingError: On HTTP error, network error, or a malformed reply.
        """
        payload = {"model": self.model, "input": [text[:MAX_EMBEDDING_INPUT]]}
        try:
            async with _get_mistral_client(self.api_key, self.base_url) as client:
                response = await client.post("/v1/embeddings", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise EmbeddingError(
                f"Mistral API error: {exc.response.status_code} - {exc.response.text}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise EmbeddingError(f"Request failed: {exc}") from exc
        except ValueError as exc:
            raise EmbeddingError("Embedding response is not JSON") from exc

        try:
            return list(data["data"][0]["embedding"])
        except (KeyError, IndexError, TypeError) as exc:
            raise EmbeddingError("Malformed embedding response") from exc
