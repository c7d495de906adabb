"""Tests for sitechat.chunker module."""

from __future__ import annotations

import pytest

from sitechat.chunker import chunk_text


def test_short_paragraphs_below_minimum_are_dropped():
    text = "A" * 50 + "\n\n" + "B" * 50
    assert chunk_text(text, max_length=60) == []


def test_paragraphs_accumulate_until_bound():
    paragraphs = [c * 120 for c in "xyz"]
    chunks = chunk_text("\n\n".join(paragraphs), max_length=300)
    assert chunks == [f"{paragraphs[0]}\n\n{paragraphs[1]}", paragraphs[2]]


def test_chunks_respect_bound_and_order():
    paragraphs = [f"paragraph {i} " + "w" * (50 + i * 7) for i in range(30)]
    chunks = chunk_text("\n\n".join(paragraphs), max_length=400)

    assert chunks
    assert all(len(chunk) <= 400 for chunk in chunks)
    joined = "\n\n".join(chunks)
    positions = [joined.index(f"paragraph {i} ") for i in range(30)]
    assert positions == sorted(positions)


def test_oversized_paragraph_is_hard_split():
    paragraph = "q" * 400
    chunks = chunk_text(paragraph, max_length=150)
    # The trailing 100-character piece falls under the minimum.
    assert chunks == ["q" * 150, "q" * 150]


def test_blank_paragraphs_are_skipped():
    text = "\n\n".join(["r" * 120, "   ", "", "s" * 120])
    chunks = chunk_text(text, max_length=1000)
    assert chunks == ["r" * 120 + "\n\n" + "s" * 120]


def test_runs_of_blank_lines_split_paragraphs():
    text = "t" * 120 + "\n\n\n\n" + "u" * 120
    assert chunk_text(text, max_length=130) == ["t" * 120, "u" * 120]


def test_empty_text():
    assert chunk_text("") == []


def test_default_bound_keeps_single_chunk():
    text = "word " * 200
    assert chunk_text(text) == [text.strip()]


def test_rejects_non_positive_bound():
    with pytest.raises(ValueError):
        chunk_text("anything", max_length=0)
