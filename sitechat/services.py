"""Collaborators shared by the pipeline entry points."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .embeddings import MistralEmbeddings
from .settings import Settings
from .store import SiteStore
from .vector_store import VectorIndex


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...


@dataclass
class Services:
    store: SiteStore
    vectors: VectorIndex
    embedder: Embedder
    settings: Settings = field(default_factory=Settings)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Services":
        """Wire Redis, Pinecone and Mistral clients from settings.

        Raises:
            ConfigError: If an API key is missing.
        """
        settings = settings or Settings.from_env()
        return cls(
            store=SiteStore.from_url(settings.redis_url),
            vectors=VectorIndex.from_settings(settings),
            embedder=MistralEmbeddings.from_settings(settings),
            settings=settings,
        )

    async def aclose(self) -> None:
        await self.store.aclose()
