"""Normalization utilities for knowledge-base content records."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from .models import CanonicalDocument

DOCUMENT_SOURCE = "kb_content"
PARAGRAPH_BLOCK = "paragraph"
PARAGRAPH_SEPARATOR = "\n\n"


class DiscardReason(str, Enum):
    INVALID_RECORD = "invalid_record"
    MISSING_TITLE = "missing_title"
    MISSING_CONTENT = "missing_content"
    NO_TEXT = "no_text"


@dataclass(slots=True)
class NormalizedRecord:
    document: CanonicalDocument | None = None
    reason: DiscardReason | None = None

    @property
    def accepted(self) -> bool:
        return self.document is not None


def _field(record: dict[str, Any], *names: str) -> Any:
    for name in names:
        value = record.get(name)
        if value:
            return value
    return None


def extract_paragraph_text(block: Any) -> str | None:
    """Return the trimmed text of a paragraph block, or None for any other block."""
    if not isinstance(block, dict) or block.get("type") != PARAGRAPH_BLOCK:
        return None
    children = block.get("children")
    if not isinstance(children, list) or not children:
        return None
    spans = []
    for child in children:
        text = child.get("text") if isinstance(child, dict) else None
        spans.append(text if isinstance(text, str) else "")
    joined = " ".join(spans).strip()
    return joined or None


def extract_body_text(blocks: Iterable[Any]) -> str:
    paragraphs = filter(None, (extract_paragraph_text(block) for block in blocks))
    return PARAGRAPH_SEPARATOR.join(paragraphs)


def normalize_record(raw: Any) -> NormalizedRecord:
    """Convert one upstream record, tagging why it was discarded when it cannot be used."""
    if not isinstance(raw, dict):
        return NormalizedRecord(reason=DiscardReason.INVALID_RECORD)

    content = _field(raw, "Content", "content")
    if not content:
        return NormalizedRecord(reason=DiscardReason.MISSING_CONTENT)
    title = _field(raw, "Title", "title")
    if not title:
        return NormalizedRecord(reason=DiscardReason.MISSING_TITLE)
    if not isinstance(content, list):
        return NormalizedRecord(reason=DiscardReason.INVALID_RECORD)

    body = extract_body_text(content)
    if not body:
        return NormalizedRecord(reason=DiscardReason.NO_TEXT)

    document = CanonicalDocument(
        page_content=body,
        metadata={
            "source": DOCUMENT_SOURCE,
            "id": raw.get("id"),
            "title": title,
            "documentId": raw.get("documentId"),
        },
    )
    return NormalizedRecord(document=document)


def normalize(raw: Any) -> CanonicalDocument | None:
    return normalize_record(raw).document


def dedupe_documents(documents: Iterable[CanonicalDocument]) -> list[CanonicalDocument]:
    """Keep one document per documentId; later records overwrite earlier ones."""
    unique: dict[Any, CanonicalDocument] = {}
    for document in documents:
        unique[document.document_id] = document
    return list(unique.values())
