from __future__ import annotations

import pytest

from kb_assistant.index.chunking import Chunker, reconstruct_text
from kb_assistant.index.models import CanonicalDocument


def _document(text: str) -> CanonicalDocument:
    return CanonicalDocument(
        page_content=text,
        metadata={"source": "kb_content", "id": 1, "title": "Doc", "documentId": "d1"},
    )


def test_short_document_yields_single_chunk() -> None:
    chunker = Chunker(chunk_size=2000, chunk_overlap=200)
    chunks = chunker.split(_document("Milvus is a vector database."))

    assert len(chunks) == 1
    assert chunks[0].text == "Milvus is a vector database."
    assert chunks[0].metadata["title"] == "Doc"


def test_splits_on_paragraphs_first() -> None:
    text = "First paragraph here.\n\nSecond paragraph here.\n\nThird one."
    chunker = Chunker(chunk_size=30, chunk_overlap=0)
    chunks = chunker.split(_document(text))

    assert [chunk.text for chunk in chunks] == [
        "First paragraph here.\n\n",
        "Second paragraph here.\n\n",
        "Third one.",
    ]


def test_chunks_respect_size_and_reconstruct_text() -> None:
    paragraphs = [
        " ".join(f"word{index}-{position}" for position in range(25)) for index in range(6)
    ]
    text = "\n\n".join(paragraphs) + "\nTrailing line without blank separator."
    chunker = Chunker(chunk_size=120, chunk_overlap=30)
    chunks = chunker.split(_document(text))

    assert len(chunks) > 1
    assert all(len(chunk.text) <= 120 for chunk in chunks)
    assert reconstruct_text(chunks) == text


def test_consecutive_chunks_overlap_within_limit() -> None:
    text = " ".join(f"token{index}" for index in range(80))
    chunker = Chunker(chunk_size=60, chunk_overlap=15)
    chunks = chunker.split(_document(text))

    for previous, current in zip(chunks, chunks[1:]):
        overlap = previous.end_index - current.start_index
        assert 0 < overlap <= 15
        assert previous.text.endswith(text[current.start_index : previous.end_index])


def test_unsplittable_run_falls_back_to_character_slices() -> None:
    text = "x" * 250
    chunker = Chunker(chunk_size=100, chunk_overlap=10)
    chunks = chunker.split(_document(text))

    assert all(len(chunk.text) <= 100 for chunk in chunks)
    assert chunks[1].start_index == 90
    assert reconstruct_text(chunks) == text


def test_chunks_copy_parent_metadata() -> None:
    document = _document("alpha beta gamma delta epsilon zeta eta theta")
    chunks = Chunker(chunk_size=12, chunk_overlap=0).split(document)

    assert len(chunks) > 1
    for order, chunk in enumerate(chunks):
        assert chunk.metadata == document.metadata
        assert chunk.metadata is not document.metadata
        assert chunk.order == order


def test_split_empty_text_returns_nothing() -> None:
    assert Chunker().split(_document("")) == []


@pytest.mark.parametrize(
    "chunk_size, overlap", [(0, 0), (5, 5), (5, 6), (-1, 0), (5, -1)]
)
def test_chunker_validates_parameters(chunk_size: int, overlap: int) -> None:
    with pytest.raises(ValueError):
        Chunker(chunk_size=chunk_size, chunk_overlap=overlap)
