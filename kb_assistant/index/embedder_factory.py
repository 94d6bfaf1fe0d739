"""Builds the embedding backend declared in models.yaml."""

from __future__ import annotations

import logging
import time
from typing import Sequence

import httpx
import numpy as np

from kb_assistant.config_loader import ModelsConfig

from .embeddings import (
    EmbeddingBackend,
    EmbeddingError,
    HashingEmbeddingBackend,
    SentenceTransformerBackend,
)

LOGGER = logging.getLogger("kb.embedder-factory")

ACCELERATOR_PREFERENCE = ("cuda", "mps")


def _torch_accelerators() -> set[str]:
    """Accelerators torch can see; empty when torch is not installed."""
    try:  # pragma: no cover - depends on the runtime
        import torch  # type: ignore[import-not-found]
    except ImportError:  # pragma: no cover - depends on the runtime
        return set()

    found = set()
    if torch.cuda.is_available():
        found.add("cuda")
    mps = getattr(torch.backends, "mps", None)
    if mps is not None and mps.is_available():
        found.add("mps")
    return found


def resolve_device(preferred: str | None, available: set[str] | None = None) -> str:
    """Map a configured device ("auto", "gpu", "cuda:1", ...) onto one that exists."""
    wanted = (preferred or "auto").strip().lower()
    if wanted == "gpu":
        wanted = "cuda"
    if available is None:
        available = _torch_accelerators()

    if wanted in {"auto", ""}:
        return next((name for name in ACCELERATOR_PREFERENCE if name in available), "cpu")
    if wanted.split(":", 1)[0] in available:
        return wanted
    if wanted != "cpu":
        LOGGER.warning("Embedding device '%s' is not available, using cpu", wanted)
    return "cpu"


def create_embedding_backend(models_config: ModelsConfig) -> EmbeddingBackend:
    settings = models_config.embedding_model
    kind = (settings.backend or "").strip().lower().replace("_", "-")

    if kind == "hashing":
        return HashingEmbeddingBackend(dimension=settings.dimension or 256)
    if kind == "ollama":
        if not settings.endpoint:
            raise ValueError("embedding_model.endpoint is required for the ollama backend.")
        return OllamaEmbeddingBackend(
            settings.name,
            settings.endpoint,
            batch_size=settings.batch_size,
            timeout=settings.timeout,
            retry_attempts=settings.max_retries,
        )
    if kind in {"sentence-transformers", "st"}:
        return SentenceTransformerBackend(
            settings.name,
            batch_size=settings.batch_size,
            device=resolve_device(settings.device),
        )
    raise ValueError(f"Unknown embedding backend '{settings.backend}'.")


class OllamaEmbeddingBackend:
    """Embeds text in batches through Ollama's `/api/embed` endpoint."""

    def __init__(
        self,
        model: str,
        endpoint: str,
        *,
        batch_size: int = 32,
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_backoff: float = 1.5,
        session: httpx.Client | None = None,
    ) -> None:
        self.model = model
        self.base_url = endpoint.rstrip("/")
        self.batch_size = max(1, batch_size)
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self.dimension: int | None = None
        self._session = session

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.dimension or 0), dtype=np.float32)

        client = self._session or httpx.Client(timeout=self.timeout)
        try:
            batches = [
                self._embed_batch(client, texts[start : start + self.batch_size])
                for start in range(0, len(texts), self.batch_size)
            ]
        finally:
            if self._session is None:
                client.close()
        return np.vstack(batches)

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed([text])[0]

    def _embed_batch(self, client: httpx.Client, batch: Sequence[str]) -> np.ndarray:
        last_exc: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                response = client.post(
                    f"{self.base_url}/api/embed",
                    json={"model": self.model, "input": list(batch)},
                )
                response.raise_for_status()
                return self._parse(response.json(), expected=len(batch))
            except (httpx.HTTPError, ValueError) as exc:
                last_exc = exc
                if attempt == self.retry_attempts:
                    break
                delay = self.retry_backoff**attempt
                LOGGER.warning(
                    "Ollama embedding request failed (%s), attempt %s/%s, retrying in %.1fs",
                    exc,
                    attempt,
                    self.retry_attempts,
                    delay,
                )
                time.sleep(delay)
        raise EmbeddingError(f"Embedding via {self.base_url} failed") from last_exc

    def _parse(self, payload: dict, *, expected: int) -> np.ndarray:
        vectors = np.asarray(payload.get("embeddings") or [], dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[0] != expected:
            raise ValueError(f"Ollama returned embeddings of shape {vectors.shape} for {expected} inputs.")
        if self.dimension is None:
            self.dimension = int(vectors.shape[1])
        elif vectors.shape[1] != self.dimension:
            raise EmbeddingError("Ollama embeddings changed dimension between calls.")
        return vectors
