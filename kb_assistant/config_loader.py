"""Utilities for loading project configuration files."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class ServerConfig(BaseModel):
    port: int = 30080
    environment: str = "development"
    cors_origins: list[str] = Field(alias="cors-origins", default_factory=lambda: ["*"])
    log_level: str = Field(alias="log-level", default="INFO")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


class SourceConfig(BaseModel):
    url: str = "http://localhost:1337/api/milvus-knowledgebases"
    timeout_seconds: float = Field(alias="timeout-seconds", default=5.0)
    retry_attempts: int = Field(alias="retry-attempts", default=3)
    retry_backoff: float = Field(alias="retry-backoff", default=1.5)
    page_size: int | None = Field(alias="page-size", default=None)


class SearchParams(BaseModel):
    nprobe: int = 16
    offset: int = 0


class IndexConfig(BaseModel):
    uri: str = "data/index"
    collection: str = "rag_collection"
    primary_field: str = Field(alias="primary-field", default="pk")
    vector_field: str = Field(alias="vector-field", default="vector")
    text_field: str = Field(alias="text-field", default="text")
    text_max_length: int = Field(alias="text-max-length", default=4096)
    search_params: SearchParams = Field(alias="search-params", default_factory=SearchParams)
    batch_size: int = Field(alias="batch-size", default=100)


class ChunkingConfig(BaseModel):
    chunk_size: int = Field(alias="chunk-size", default=2000)
    chunk_overlap: int = Field(alias="chunk-overlap", default=200)


class RetrievalConfig(BaseModel):
    top_k: int = Field(alias="top-k", default=3)


class AssistantConfig(BaseModel):
    domain: str = "Milvus and Zilliz"


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)


class ModelConfig(BaseModel):
    name: str
    backend: str
    endpoint: str | None = None
    purpose: str | None = None
    device: str | None = None
    temperature: float = 0.7
    timeout: float = 30.0
    max_retries: int = Field(alias="max-retries", default=3)
    dimension: int | None = None
    batch_size: int = Field(alias="batch-size", default=32)


class ModelsConfig(BaseModel):
    llm_model: ModelConfig = Field(alias="llm_model")
    embedding_model: ModelConfig = Field(alias="embedding_model")


def _load_yaml(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def load_app_config(path: Path | None = None) -> AppConfig:
    """Return application config from `app.config.yaml`."""
    target = path or DATA_DIR / "app.config.yaml"
    return AppConfig.model_validate(_load_yaml(target))


def load_models_config(path: Path | None = None) -> ModelsConfig:
    """Return model selection config from `models.yaml`."""
    target = path or DATA_DIR / "models.yaml"
    return ModelsConfig.model_validate(_load_yaml(target))
