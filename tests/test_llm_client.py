from __future__ import annotations

import json

import httpx
import pytest

from kb_assistant.llm_client import ChatModel, ChatModelError

MESSAGES = [
    {"role": "system", "content": "You are helpful."},
    {"role": "user", "content": "What is Milvus?"},
]


def _model(handler, **overrides) -> ChatModel:
    config = {
        "name": "llama3.1:8b",
        "backend": "ollama",
        "endpoint": "http://llm.test/",
        "temperature": 0.2,
        "max_retries": 2,
        "retry_backoff": 0,
        **overrides,
    }
    session = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatModel(config, session=session)


@pytest.mark.asyncio
async def test_ollama_chat_request_shape() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": " Milvus is a DB. "}})

    reply = await _model(handler).complete(MESSAGES)

    assert reply == "Milvus is a DB."
    assert seen["url"] == "http://llm.test/api/chat"
    assert seen["body"]["model"] == "llama3.1:8b"
    assert seen["body"]["messages"] == MESSAGES
    assert seen["body"]["stream"] is False
    assert seen["body"]["options"] == {"temperature": 0.2}


@pytest.mark.asyncio
async def test_openai_compatible_request_uses_api_key(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"choices": [{"message": {"content": "Zilliz hosts Milvus."}}]})

    reply = await _model(handler, backend="openai", name="gpt-4o-mini").complete(MESSAGES)

    assert reply == "Zilliz hosts Milvus."
    assert seen["url"] == "http://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_retries_transient_failure() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 1:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json={"message": {"content": "ok"}})

    assert await _model(handler).complete(MESSAGES) == "ok"
    assert attempts["count"] == 2


@pytest.mark.asyncio
async def test_raises_after_exhausting_retries() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ChatModelError):
        await _model(handler, max_retries=3).complete(MESSAGES)
    assert attempts["count"] == 3


@pytest.mark.asyncio
async def test_empty_completion_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"message": {"content": "   "}})

    with pytest.raises(ChatModelError):
        await _model(handler).complete(MESSAGES)


@pytest.mark.asyncio
async def test_rejects_unknown_backend() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ChatModelError):
        await _model(handler, backend="mystery").complete(MESSAGES)
