"""Retrieval-and-answer pipeline: refresh, retrieve, prompt, complete."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Protocol, Sequence

from kb_assistant.index.models import ContextPassage
from kb_assistant.index.sync import RefreshOutcome, SyncEngine
from kb_assistant.llm_client import Message

from .prompts import build_messages

LOGGER = logging.getLogger("kb.answer-pipeline")

PREVIEW_CHAR_LIMIT = 150


class CompletionModel(Protocol):
    async def complete(self, messages: Sequence[Message]) -> str: ...


@dataclass(slots=True)
class AnswerResult:
    answer: str
    context: list[ContextPassage] = field(default_factory=list)
    refresh: RefreshOutcome | None = None

    def to_json_dict(self) -> dict[str, object]:
        return {
            "answer": self.answer,
            "context": [passage.to_json_dict() for passage in self.context],
        }


class AnswerPipeline:
    """Answers a question from the top-k passages of the synced collection."""

    def __init__(
        self,
        *,
        sync_engine: SyncEngine,
        chat_model: CompletionModel,
        domain: str,
        top_k: int = 3,
    ) -> None:
        self.sync_engine = sync_engine
        self.chat_model = chat_model
        self.domain = domain
        self.top_k = top_k

    async def answer(
        self, history: Iterable[Mapping[str, str]], question: str
    ) -> AnswerResult:
        index = await self.sync_engine.ensure_index_ready()
        refresh = await self.sync_engine.try_refresh()

        results = await index.similarity_search_with_score(question, self.top_k)
        for position, result in enumerate(results, start=1):
            LOGGER.debug(
                "Retrieved document %s (score: %.4f) %s: %s...",
                position,
                result.score,
                result.chunk.metadata.get("title"),
                result.chunk.text[:PREVIEW_CHAR_LIMIT],
            )

        chunks = [result.chunk for result in results]
        messages = build_messages(
            domain=self.domain,
            chunks=chunks,
            history=list(history),
            question=question,
        )
        answer = await self.chat_model.complete(messages)
        return AnswerResult(
            answer=answer,
            context=[ContextPassage.from_chunk(chunk) for chunk in chunks],
            refresh=refresh,
        )
