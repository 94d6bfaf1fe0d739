"""Recursive character splitting of canonical documents into overlapping chunks."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Sequence

from .models import CanonicalDocument, Chunk

DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")


@dataclass(slots=True, frozen=True)
class TextSpan:
    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start


class Chunker:
    """Splits text on a priority-ordered list of separators, merging pieces into overlapping windows."""

    def __init__(
        self,
        *,
        chunk_size: int = 2000,
        chunk_overlap: int = 200,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be a positive integer.")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must satisfy 0 <= overlap < chunk_size.")
        if not separators:
            raise ValueError("separators must not be empty.")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        # The empty separator guarantees every piece can be cut down to size.
        self.separators = tuple(separators) if separators[-1] == "" else (*separators, "")

    def split_text(self, text: str) -> list[TextSpan]:
        if not text:
            return []
        pieces = self._split_pieces(text, TextSpan(0, len(text)), self.separators)
        return self._merge_pieces(pieces)

    def split(self, document: CanonicalDocument) -> list[Chunk]:
        text = document.page_content
        return [
            Chunk(
                text=text[span.start : span.end],
                metadata=dict(document.metadata),
                order=index,
                start_index=span.start,
            )
            for index, span in enumerate(self.split_text(text))
        ]

    def split_documents(self, documents: Iterable[CanonicalDocument]) -> list[Chunk]:
        chunks: list[Chunk] = []
        for document in documents:
            chunks.extend(self.split(document))
        return chunks

    def _split_pieces(
        self, text: str, span: TextSpan, separators: Sequence[str]
    ) -> list[TextSpan]:
        segment = text[span.start : span.end]
        separator_index = next(
            index
            for index, separator in enumerate(separators)
            if separator == "" or separator in segment
        )
        separator = separators[separator_index]
        remaining = separators[separator_index + 1 :]

        pieces: list[TextSpan] = []
        for piece in _cut(segment, separator, offset=span.start):
            if len(piece) <= self.chunk_size or not remaining:
                pieces.append(piece)
            else:
                pieces.extend(self._split_pieces(text, piece, remaining))
        return pieces

    def _merge_pieces(self, pieces: Sequence[TextSpan]) -> list[TextSpan]:
        windows: list[TextSpan] = []
        current: deque[TextSpan] = deque()
        total = 0
        for piece in pieces:
            length = len(piece)
            if current and total + length > self.chunk_size:
                windows.append(TextSpan(current[0].start, current[-1].end))
                while current and (total > self.chunk_overlap or total + length > self.chunk_size):
                    total -= len(current.popleft())
            current.append(piece)
            total += length
        if current:
            windows.append(TextSpan(current[0].start, current[-1].end))
        return windows


def _cut(segment: str, separator: str, *, offset: int) -> list[TextSpan]:
    """Cut a segment after each separator occurrence so the pieces concatenate back to it."""
    if separator == "":
        return [TextSpan(offset + index, offset + index + 1) for index in range(len(segment))]
    spans: list[TextSpan] = []
    start = 0
    while start < len(segment):
        found = segment.find(separator, start)
        end = len(segment) if found == -1 else found + len(separator)
        spans.append(TextSpan(offset + start, offset + end))
        start = end
    return spans


def reconstruct_text(chunks: Sequence[Chunk]) -> str:
    """Rebuild the parent text from one document's chunks, dropping the overlapping prefixes."""
    parts: list[str] = []
    covered = 0
    for chunk in sorted(chunks, key=lambda item: item.order):
        skip = max(0, covered - chunk.start_index)
        parts.append(chunk.text[skip:])
        covered = max(covered, chunk.end_index)
    return "".join(parts)
