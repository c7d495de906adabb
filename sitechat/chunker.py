"""Paragraph-aligned text chunking for embedding."""

from __future__ import annotations

import re
from typing import List

PARAGRAPH_SPLIT_RE = re.compile(r"\n\n+")
PARAGRAPH_SEPARATOR = "\n\n"
DEFAULT_MAX_LENGTH = 6000
MIN_CHUNK_LENGTH = 100


def _pieces(paragraph: str, max_length: int) -> List[str]:
    # A single oversized paragraph is hard-split so no chunk exceeds the bound.
    if len(paragraph) <= max_length:
        return [paragraph]
    return [
        paragraph[start : start + max_length]
        for start in range(0, len(paragraph), max_length)
    ]


def chunk_text(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> List[str]:
    """Split ``text`` into chunks of at most ``max_length`` characters.

    Paragraphs (blank-line delimited) are accumulated greedily; a new chunk
    starts when the next paragraph, including its separator, would not fit.
    Chunks of ``MIN_CHUNK_LENGTH`` characters or fewer after trimming are
    dropped.

    Example:
        >>> chunk_text("A" * 50 + "\\n\\n" + "B" * 50, max_length=60)
        []
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    chunks: List[str] = []
    current = ""
    for paragraph in PARAGRAPH_SPLIT_RE.split(text or ""):
        if not paragraph.strip():
            continue
        for piece in _pieces(paragraph, max_length):
            if not current:
                current = piece
            elif len(current) + len(PARAGRAPH_SEPARATOR) + len(piece) <= max_length:
                current = f"{current}{PARAGRAPH_SEPARATOR}{piece}"
            else:
                chunks.append(current)
                current = piece
    if current:
        chunks.append(current)

    trimmed = (chunk.strip() for chunk in chunks)
    return [chunk for chunk in trimmed if len(chunk) > MIN_CHUNK_LENGTH]
