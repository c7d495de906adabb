"""Chunk, embed and upsert page content into a site's vector namespace."""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Any, Dict, List

from .chunker import chunk_text
from .document import Chunk, PageRecord, utc_timestamp
from .vector_store import VectorIndex, derive_namespace

if TYPE_CHECKING:
    from .services import Embedder, Services

LOGGER = logging.getLogger(__name__)


def vector_id(page_url: str, chunk_index: int) -> str:
    """Stable id so re-indexing a page overwrites its old vectors."""
    digest = hashlib.sha1(page_url.encode("utf-8")).hexdigest()
    return f"{digest}-{chunk_index}"


def build_chunks(
    source_url: str,
    page_url: str,
    title: str,
    content: str,
) -> List[Chunk]:
    timestamp = utc_timestamp()
    return [
        Chunk(
            text=text,
            index=index,
            source_url=source_url,
            page_url=page_url,
            title=title,
            timestamp=timestamp,
        )
        for index, text in enumerate(chunk_text(content))
    ]


async def index_page_vectors(
    source_url: str,
    page_url: str,
    title: str,
    content: str,
    *,
    embedder: "Embedder",
    vectors: VectorIndex,
) -> int:
    """
    Embed a page's chunks and upsert them into the seed's namespace.

    Returns:
        Number of vectors stored.

    Raises:
        EmbeddingError: If any chunk fails to embed; nothing is upserted then.
    """
    chunks = build_chunks(source_url, page_url, title, content)
    if not chunks:
        LOGGER.debug("No chunks long enough to index for %s", page_url)
        return 0

    records: List[Dict[str, Any]] = []
    for chunk in chunks:
        values = await embedder.embed(chunk.text)
        records.append(
            {
                "id": vector_id(page_url, chunk.index),
                "values": values,
                "metadata": chunk.metadata(),
            }
        )

    namespace = derive_namespace(source_url)
    stored = await vectors.upsert(namespace, records)
    LOGGER.info("Stored %d vector(s) for %s in %s", stored, page_url, namespace)
    return stored


async def index_page(services: "Services", record: PageRecord) -> int:
    """Persist the page blob, then index its vectors."""
    await services.store.store_page(record)
    return await index_page_vectors(
        record.source_url,
        record.url,
        record.title,
        record.content,
        embedder=services.embedder,
        vectors=services.vectors,
    )
