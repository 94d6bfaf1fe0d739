"""Embedding backends used by the vector index and the answer pipeline."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any, Protocol, Sequence

import numpy as np

LOGGER = logging.getLogger("kb.embeddings")

TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class EmbeddingError(RuntimeError):
    """Raised when an embedding provider keeps failing after its retries."""


class EmbeddingBackend(Protocol):
    def embed(self, texts: Sequence[str]) -> np.ndarray: ...

    def embed_one(self, text: str) -> np.ndarray: ...


def normalize_embeddings(embeddings: np.ndarray) -> np.ndarray:
    """Scale rows to unit length; zero rows stay zero."""
    if embeddings.ndim != 2:
        raise ValueError(f"expected a 2D array of embeddings, got shape {embeddings.shape}")
    lengths = np.linalg.norm(embeddings, axis=1, keepdims=True)
    return embeddings / np.where(lengths == 0, 1.0, lengths)


class SentenceTransformerBackend:
    """Local `sentence-transformers` model, loaded on first use."""

    def __init__(self, model_name: str, *, batch_size: int = 32, device: str | None = None) -> None:
        self.model_name = model_name
        self.batch_size = batch_size
        self.device = device
        self._model: Any = None

    @property
    def model(self) -> Any:
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:
                raise EmbeddingError(
                    "The sentence-transformers backend needs the 'embeddings' extra installed."
                ) from exc
            LOGGER.info("Loading sentence-transformers model %s on %s", self.model_name, self.device or "default device")
            self._model = SentenceTransformer(self.model_name, device=self.device)
        return self._model

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.model.get_sentence_embedding_dimension()), dtype=np.float32)
        try:
            vectors = self.model.encode(
                list(texts),
                batch_size=self.batch_size,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except RuntimeError as exc:
            raise EmbeddingError(f"sentence-transformers failed on {self.device or 'default device'}: {exc}") from exc
        return np.asarray(vectors, dtype=np.float32)

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed([text])[0]


class HashingEmbeddingBackend:
    """Deterministic bag-of-words embedder for offline development and tests."""

    def __init__(self, dimension: int = 256) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive.")
        self.dimension = dimension

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)
        return np.vstack([self._bucket_counts(text) for text in texts])

    def embed_one(self, text: str) -> np.ndarray:
        return self._bucket_counts(text)

    def _bucket_counts(self, text: str) -> np.ndarray:
        counts = np.zeros(self.dimension, dtype=np.float32)
        for token in TOKEN_RE.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            counts[int.from_bytes(digest, "big") % self.dimension] += 1.0
        return counts
