"""Vector index capability and a numpy-backed local collection implementation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

import numpy as np
import orjson

from kb_assistant.config_loader import IndexConfig, SearchParams

from .embeddings import EmbeddingBackend, normalize_embeddings
from .models import Chunk, SearchResult

LOGGER = logging.getLogger("kb.vector-store")

VECTORS_FILENAME = "vectors.npy"
COLLECTION_FILENAME = "collection.json"


class CollectionNotFoundError(LookupError):
    """Raised when attaching to a collection that has not been created yet."""


class VectorIndex(Protocol):
    """Live handle to a named vector collection."""

    name: str

    def count(self) -> int: ...

    async def add_documents(self, chunks: Sequence[Chunk]) -> list[int]: ...

    async def delete_all(self) -> None: ...

    async def flush(self) -> None: ...

    async def similarity_search_with_score(self, query: str, k: int) -> list[SearchResult]: ...


class VectorIndexProvider(Protocol):
    """Opens or creates the configured collection."""

    async def attach(self) -> VectorIndex: ...

    async def create_from_documents(self, chunks: Sequence[Chunk]) -> VectorIndex: ...


@dataclass(slots=True, frozen=True)
class CollectionSchema:
    name: str
    primary_field: str = "pk"
    vector_field: str = "vector"
    text_field: str = "text"
    text_max_length: int = 4096

    @classmethod
    def from_config(cls, config: IndexConfig) -> "CollectionSchema":
        return cls(
            name=config.collection,
            primary_field=config.primary_field,
            vector_field=config.vector_field,
            text_field=config.text_field,
            text_max_length=config.text_max_length,
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "primary_field": self.primary_field,
            "vector_field": self.vector_field,
            "text_field": self.text_field,
            "text_max_length": self.text_max_length,
        }


class LocalVectorIndex:
    """Stores one collection's embeddings on disk and provides cosine-similarity search.

    Inserts and deletes change the in-memory collection; `flush` writes it out.
    """

    def __init__(
        self,
        directory: Path,
        *,
        schema: CollectionSchema,
        embedder: EmbeddingBackend,
        search_params: SearchParams | None = None,
    ) -> None:
        self.directory = directory
        self.schema = schema
        self.embedder = embedder
        self.search_params = search_params or SearchParams()
        self._vectors: np.ndarray | None = None
        self._records: list[dict[str, Any]] = []
        self._next_pk = 1

    @property
    def name(self) -> str:
        return self.schema.name

    def exists(self) -> bool:
        return (self.directory / COLLECTION_FILENAME).exists()

    def count(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def load(self) -> None:
        collection_path = self.directory / COLLECTION_FILENAME
        if not collection_path.exists():
            raise CollectionNotFoundError(self.schema.name)
        payload = orjson.loads(collection_path.read_bytes())
        stored_schema = payload.get("schema") or {}
        if stored_schema != self.schema.to_json_dict():
            raise ValueError(
                f"Collection '{self.schema.name}' was created with a different schema: {stored_schema}"
            )
        self._records = list(payload.get("records") or [])
        self._next_pk = int(payload.get("next_pk") or len(self._records) + 1)
        vectors_path = self.directory / VECTORS_FILENAME
        if self._records:
            self._vectors = np.load(vectors_path).astype("float32")
            if self._vectors.shape[0] != len(self._records):
                raise ValueError("Stored vectors do not match stored records.")
        else:
            self._vectors = None

    async def flush(self) -> None:
        """Write the in-memory collection to disk off the event loop."""
        await asyncio.to_thread(self._write, *self._snapshot())

    def _snapshot(self) -> tuple[np.ndarray | None, dict[str, Any]]:
        payload = {
            "schema": self.schema.to_json_dict(),
            "next_pk": self._next_pk,
            "records": list(self._records),
        }
        return self._vectors, payload

    def _write(self, vectors: np.ndarray | None, payload: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        vectors_path = self.directory / VECTORS_FILENAME
        if vectors is not None and payload["records"]:
            np.save(vectors_path, vectors)
        elif vectors_path.exists():
            vectors_path.unlink()
        (self.directory / COLLECTION_FILENAME).write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))

    async def add_documents(self, chunks: Sequence[Chunk]) -> list[int]:
        if not chunks:
            return []
        self._validate_texts(chunks)
        # Embed before touching state so a failed embed leaves the collection unchanged.
        embeddings = await asyncio.to_thread(self.embedder.embed, [chunk.text for chunk in chunks])
        if embeddings.ndim != 2 or embeddings.shape[0] != len(chunks):
            raise ValueError("Embedder returned mismatched number of vectors.")
        embeddings = embeddings.astype("float32")
        if self._vectors is not None and embeddings.shape[1] != self._vectors.shape[1]:
            raise ValueError("Embedding dimensionality does not match existing index.")

        records = []
        keys = []
        for chunk in chunks:
            keys.append(self._next_pk)
            records.append(self._record_for(self._next_pk, chunk))
            self._next_pk += 1

        self._vectors = embeddings if self._vectors is None else np.vstack([self._vectors, embeddings])
        self._records = [*self._records, *records]
        return keys

    async def delete_all(self) -> None:
        self._vectors = None
        self._records = []

    async def similarity_search_with_score(self, query: str, k: int) -> list[SearchResult]:
        if self._vectors is None or not self._records or k <= 0:
            return []
        query_vector = await asyncio.to_thread(self.embedder.embed_one, query)
        # A sync may have replaced the collection while the query was embedding.
        vectors, records = self._vectors, self._records
        if vectors is None or not records:
            return []
        query_vector = np.asarray(query_vector, dtype=np.float32)
        if query_vector.ndim != 1 or query_vector.shape[0] != vectors.shape[1]:
            raise ValueError("query dimensionality does not match the index.")

        normalized_index = normalize_embeddings(vectors)
        normalized_query = normalize_embeddings(query_vector.reshape(1, -1))[0]
        scores = normalized_index @ normalized_query

        # Stable sort: ties keep insertion order.
        ranked = np.argsort(-scores, kind="stable")
        offset = max(0, self.search_params.offset)
        return [
            SearchResult(chunk=self._chunk_from_record(records[idx]), score=float(scores[idx]))
            for idx in ranked[offset : offset + k]
        ]

    def _validate_texts(self, chunks: Sequence[Chunk]) -> None:
        for chunk in chunks:
            if len(chunk.text) > self.schema.text_max_length:
                raise ValueError(
                    f"Chunk text of {len(chunk.text)} characters exceeds the "
                    f"{self.schema.text_field} field limit of {self.schema.text_max_length}."
                )

    def _record_for(self, key: int, chunk: Chunk) -> dict[str, Any]:
        return {
            self.schema.primary_field: key,
            self.schema.text_field: chunk.text,
            "order": chunk.order,
            "start_index": chunk.start_index,
            "metadata": dict(chunk.metadata),
        }

    def _chunk_from_record(self, record: dict[str, Any]) -> Chunk:
        return Chunk(
            text=str(record[self.schema.text_field]),
            metadata=dict(record.get("metadata") or {}),
            order=int(record.get("order") or 0),
            start_index=int(record.get("start_index") or 0),
        )


class LocalIndexProvider:
    """Opens collections stored under `index.uri/<collection>`."""

    def __init__(
        self,
        *,
        root: Path,
        schema: CollectionSchema,
        embedder: EmbeddingBackend,
        search_params: SearchParams | None = None,
    ) -> None:
        self.root = root
        self.schema = schema
        self.embedder = embedder
        self.search_params = search_params or SearchParams()

    @classmethod
    def from_config(cls, config: IndexConfig, *, root: Path, embedder: EmbeddingBackend) -> "LocalIndexProvider":
        return cls(
            root=root,
            schema=CollectionSchema.from_config(config),
            embedder=embedder,
            search_params=config.search_params,
        )

    def _new_index(self) -> LocalVectorIndex:
        return LocalVectorIndex(
            self.root / self.schema.name,
            schema=self.schema,
            embedder=self.embedder,
            search_params=self.search_params,
        )

    async def attach(self) -> LocalVectorIndex:
        index = self._new_index()
        index.load()
        LOGGER.info("Attached to collection '%s' with %s entries", index.name, index.count())
        return index

    async def create_from_documents(self, chunks: Sequence[Chunk]) -> LocalVectorIndex:
        index = self._new_index()
        # Nothing is written to disk until every chunk has been embedded.
        await index.add_documents(chunks)
        await index.flush()
        LOGGER.info("Created collection '%s' with %s entries", index.name, index.count())
        return index
