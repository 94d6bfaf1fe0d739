from __future__ import annotations

import asyncio
import copy
import json
from typing import Any, Sequence

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from kb_assistant.config_loader import AppConfig, ModelsConfig
from kb_assistant.index.build import build_sync_engine
from kb_assistant.index.chunking import Chunker
from kb_assistant.index.client import ContentSourceClient
from kb_assistant.index.embeddings import HashingEmbeddingBackend
from kb_assistant.index.models import Chunk
from kb_assistant.index.snapshot import CorpusSnapshot, fingerprint_payload
from kb_assistant.index.sync import SyncEngine
from kb_assistant.index.vector_store import CollectionSchema, LocalIndexProvider
from kb_assistant.main import create_app
from kb_assistant.rag import AnswerPipeline

SOURCE_URL = "http://kb.test/api/milvus-knowledgebases"


def make_record(
    record_id: int,
    document_id: str,
    title: str | None,
    *paragraphs: str,
) -> dict[str, Any]:
    return {
        "id": record_id,
        "documentId": document_id,
        "Title": title,
        "Content": [
            {"type": "paragraph", "children": [{"type": "text", "text": text}]}
            for text in paragraphs
        ],
    }


def make_app_config(tmp_path, **sections: dict[str, Any]) -> AppConfig:
    payload: dict[str, Any] = {
        "server": {"environment": "development", "log-level": "WARNING"},
        "source": {
            "url": SOURCE_URL,
            "timeout-seconds": 1,
            "retry-attempts": 1,
            "retry-backoff": 0,
        },
        "index": {"uri": str(tmp_path / "index"), "batch-size": 2},
        "chunking": {"chunk-size": 200, "chunk-overlap": 20},
        "retrieval": {"top-k": 2},
        "assistant": {"domain": "Milvus and Zilliz"},
    }
    for name, values in sections.items():
        payload[name] = {**payload.get(name, {}), **values}
    return AppConfig.model_validate(payload)


def make_models_config() -> ModelsConfig:
    return ModelsConfig.model_validate(
        {
            "llm_model": {"name": "test-model", "backend": "ollama", "endpoint": "http://llm.test"},
            "embedding_model": {"name": "hashing", "backend": "hashing", "dimension": 64},
        }
    )


class FakeSource:
    """Scripted content source; fingerprints the JSON body the way a real fetch would."""

    def __init__(self, records: list[dict[str, Any]]) -> None:
        self.records = records
        self.calls = 0
        self.error: Exception | None = None

    async def fetch_snapshot(self) -> CorpusSnapshot:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        body = json.dumps({"data": self.records}).encode("utf-8")
        return CorpusSnapshot(records=copy.deepcopy(self.records), fingerprint=fingerprint_payload(body))


class CountingIndex:
    """Delegates to a real index while counting mutations."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.name = inner.name
        self.add_calls = 0
        self.delete_calls = 0
        self.flush_calls = 0

    def count(self) -> int:
        return self.inner.count()

    async def add_documents(self, chunks: Sequence[Chunk]) -> list[int]:
        self.add_calls += 1
        await asyncio.sleep(0)
        return await self.inner.add_documents(chunks)

    async def delete_all(self) -> None:
        self.delete_calls += 1
        await asyncio.sleep(0)
        await self.inner.delete_all()

    async def flush(self) -> None:
        self.flush_calls += 1
        await self.inner.flush()

    async def similarity_search_with_score(self, query: str, k: int):
        return await self.inner.similarity_search_with_score(query, k)

    @property
    def mutations(self) -> int:
        return self.add_calls + self.delete_calls


class CountingProvider:
    def __init__(self, inner: LocalIndexProvider) -> None:
        self.inner = inner
        self.attach_calls = 0
        self.create_calls = 0
        self.index: CountingIndex | None = None

    async def attach(self) -> CountingIndex:
        self.attach_calls += 1
        self.index = CountingIndex(await self.inner.attach())
        return self.index

    async def create_from_documents(self, chunks: Sequence[Chunk]) -> CountingIndex:
        self.create_calls += 1
        self.index = CountingIndex(await self.inner.create_from_documents(chunks))
        return self.index


class ScriptedChatModel:
    def __init__(self, reply: str = "Milvus stores vectors.") -> None:
        self.reply = reply
        self.calls: list[list[dict[str, str]]] = []
        self.error: Exception | None = None

    async def complete(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.reply


def make_provider(tmp_path, embedder=None) -> CountingProvider:
    return CountingProvider(
        LocalIndexProvider(
            root=tmp_path / "index",
            schema=CollectionSchema(name="rag_collection"),
            embedder=embedder or HashingEmbeddingBackend(dimension=64),
        )
    )


def make_engine(tmp_path, source, *, chunk_size: int = 200, chunk_overlap: int = 20, batch_size: int = 2):
    provider = make_provider(tmp_path)
    engine = SyncEngine(
        source=source,
        provider=provider,
        chunker=Chunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap),
        batch_size=batch_size,
    )
    return engine, provider


@pytest.fixture
def corpus() -> list[dict[str, Any]]:
    return [
        make_record(1, "d1", "Milvus Basics", "Milvus is a vector database."),
        make_record(
            2,
            "d2",
            "Zilliz Cloud",
            "Zilliz Cloud is a managed Milvus service.",
            "It offers serverless clusters.",
        ),
    ]


@pytest.fixture
def source(corpus) -> FakeSource:
    return FakeSource(corpus)


@pytest.fixture
def chat_model() -> ScriptedChatModel:
    return ScriptedChatModel()


@pytest.fixture
def source_state() -> dict[str, Any]:
    return {"reachable": True, "records": None, "requests": 0}


@pytest_asyncio.fixture
async def client(tmp_path, corpus, chat_model, source_state):
    source_state["records"] = corpus

    def handler(request: httpx.Request) -> httpx.Response:
        source_state["requests"] += 1
        if not source_state["reachable"]:
            raise httpx.ConnectError("source offline", request=request)
        return httpx.Response(200, json={"data": source_state["records"]})

    app_config = make_app_config(tmp_path)
    app = create_app(app_config, make_models_config())

    session = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    content_source = ContentSourceClient(config=app_config.source, session=session)
    sync_engine = build_sync_engine(
        app_config, HashingEmbeddingBackend(dimension=64), source=content_source
    )
    app.state.sync_engine = sync_engine
    app.state.chat_model = chat_model
    app.state.answer_pipeline = AnswerPipeline(
        sync_engine=sync_engine,
        chat_model=chat_model,
        domain=app_config.assistant.domain,
        top_k=app_config.retrieval.top_k,
    )

    transport = ASGITransport(app=app)
    async_client = AsyncClient(transport=transport, base_url="http://testserver", timeout=10.0)
    async_client.app = app  # type: ignore[attr-defined]
    try:
        yield async_client
    finally:
        await async_client.aclose()
        await session.aclose()
