"""Namespaced vector storage on a Pinecone index.

Every seed URL gets its own namespace so one site's vectors never mix with
another's. The Pinecone client is synchronous; calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from pinecone import Pinecone

from .settings import Settings

LOGGER = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 100
MAX_NAMESPACE_LENGTH = 63

_PROTOCOL_RE = re.compile(r"^https?://", re.I)
_TRAILING_SLASHES_RE = re.compile(r"/+$")
_SEPARATOR_RE = re.compile(r"[./]")
_INVALID_CHARS_RE = re.compile(r"[^a-zA-Z0-9-]")


def derive_namespace(url: str) -> str:
    """Storage namespace for a seed URL.

    >>> derive_namespace("https://Example.com/")
    'example-com'
    """
    value = _PROTOCOL_RE.sub("", url.strip())
    value = _TRAILING_SLASHES_RE.sub("", value)
    value = _SEPARATOR_RE.sub("-", value)
    value = _INVALID_CHARS_RE.sub("", value)
    return value.lower()[:MAX_NAMESPACE_LENGTH]


@dataclass(slots=True)
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


def _get(obj: Any, name: str, default: Any = None) -> Any:
    # Pinecone responses support attribute access; plain dicts do not.
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class VectorIndex:
    """Async facade over one Pinecone index."""

    def __init__(self, index: Any):
        self.index = index

    @classmethod
    def from_settings(cls, settings: Settings) -> "VectorIndex":
        settings.require("pinecone_api_key")
        client = Pinecone(api_key=settings.pinecone_api_key)
        return cls(client.Index(settings.pinecone_index_name))

    async def upsert(self, namespace: str, vectors: Sequence[Dict[str, Any]]) -> int:
        """Upsert ``{"id", "values", "metadata"}`` records in batches."""
        total = len(vectors)
        for start in range(0, total, UPSERT_BATCH_SIZE):
            batch = list(vectors[start : start + UPSERT_BATCH_SIZE])
            LOGGER.debug(
                "Upserting batch %d/%d (size: %d) into namespace %s",
                start // UPSERT_BATCH_SIZE + 1,
                (total + UPSERT_BATCH_SIZE - 1) // UPSERT_BATCH_SIZE,
                len(batch),
                namespace,
            )
            await asyncio.to_thread(self.index.upsert, vectors=batch, namespace=namespace)
        return total

    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int = 5,
    ) -> List[VectorMatch]:
        response = await asyncio.to_thread(
            self.index.query,
            vector=list(vector),
            top_k=top_k,
            include_metadata=True,
            namespace=namespace,
        )
        return [
            VectorMatch(
                id=str(_get(match, "id", "")),
                score=float(_get(match, "score", 0.0) or 0.0),
                metadata=dict(_get(match, "metadata", None) or {}),
            )
            for match in (_get(response, "matches", None) or [])
        ]

    async def delete_namespace(self, namespace: str) -> None:
        await asyncio.to_thread(self.index.delete, delete_all=True, namespace=namespace)
        LOGGER.info("Deleted all vectors in namespace %s", namespace)

    async def namespace_counts(self) -> Dict[str, int]:
        """Vector count per namespace, from index-wide stats."""
        stats = await asyncio.to_thread(self.index.describe_index_stats)
        namespaces = _get(stats, "namespaces", None) or {}
        return {
            name: int(_get(summary, "vector_count", 0) or 0)
            for name, summary in namespaces.items()
        }

    async def namespace_stats(self, source_url: str) -> Dict[str, Any]:
        namespace = derive_namespace(source_url)
        counts = await self.namespace_counts()
        return {
            "url": source_url,
            "namespace": namespace,
            "record_count": counts.get(namespace, 0),
            "exists": namespace in counts,
        }
