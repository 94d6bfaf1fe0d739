"""Corpus sync and vector index tooling for the knowledge-base assistant."""

from __future__ import annotations

from .chunking import Chunker, reconstruct_text
from .client import ContentSourceClient, ContentSourceError
from .embedder_factory import create_embedding_backend
from .models import CanonicalDocument, Chunk, ContextPassage, SearchResult
from .normalizer import DiscardReason, dedupe_documents, normalize, normalize_record
from .snapshot import CorpusSnapshot, fingerprint_payload
from .sync import IndexContext, RefreshOutcome, RefreshStatus, SyncEngine, prepare_corpus
from .vector_store import CollectionNotFoundError, LocalIndexProvider, LocalVectorIndex

__all__ = [
    "CanonicalDocument",
    "Chunk",
    "Chunker",
    "CollectionNotFoundError",
    "ContentSourceClient",
    "ContentSourceError",
    "ContextPassage",
    "CorpusSnapshot",
    "DiscardReason",
    "IndexContext",
    "LocalIndexProvider",
    "LocalVectorIndex",
    "RefreshOutcome",
    "RefreshStatus",
    "SearchResult",
    "SyncEngine",
    "create_embedding_backend",
    "dedupe_documents",
    "fingerprint_payload",
    "normalize",
    "normalize_record",
    "prepare_corpus",
    "reconstruct_text",
]
