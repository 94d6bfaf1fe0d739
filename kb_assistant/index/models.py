"""Data structures shared by the corpus sync pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(slots=True)
class CanonicalDocument:
    """Normalized upstream record ready for chunking."""

    page_content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def document_id(self) -> Any:
        return self.metadata.get("documentId")

    @property
    def title(self) -> str | None:
        return self.metadata.get("title")


@dataclass(slots=True)
class Chunk:
    """Bounded text segment of a canonical document, the unit that gets embedded."""

    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    order: int = 0
    start_index: int = 0

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.text)

    def to_metadata(self) -> Mapping[str, Any]:
        return dict(self.metadata)


@dataclass(slots=True)
class SearchResult:
    chunk: Chunk
    score: float


@dataclass(slots=True)
class ContextPassage:
    """Retrieved passage as returned to API callers."""

    content: str
    title: str | None
    id: Any
    document_id: Any

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ContextPassage":
        return cls(
            content=chunk.text,
            title=chunk.metadata.get("title"),
            id=chunk.metadata.get("id"),
            document_id=chunk.metadata.get("documentId"),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "title": self.title,
            "id": self.id,
            "documentId": self.document_id,
        }
