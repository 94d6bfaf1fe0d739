"""Runtime retrieval and answering for the knowledge-base assistant."""

from __future__ import annotations

from .pipeline import AnswerPipeline, AnswerResult
from .prompts import NO_INFORMATION_REPLY, build_messages, out_of_scope_reply

__all__ = [
    "AnswerPipeline",
    "AnswerResult",
    "NO_INFORMATION_REPLY",
    "build_messages",
    "out_of_scope_reply",
]
