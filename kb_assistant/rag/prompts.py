"""Prompt rendering for grounded answers over the knowledge base."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from kb_assistant.index.models import Chunk
from kb_assistant.llm_client import Message

NO_INFORMATION_REPLY = "I don't have that information yet."

OUT_OF_SCOPE_TEMPLATE = (
    "This topic is outside my expertise. I specialize in {domain}. "
    "Please ask questions related to these technologies."
)

SYSTEM_TEMPLATE = """You are an AI assistant specializing in {domain}. Your goal is to provide accurate and helpful answers based on the provided context.

**Guidelines:**
1. **{domain} Queries:**
   - If the query is about {domain} and the context includes relevant information, provide a detailed and structured response.
   - Use proper Markdown formatting:
     - ``` for code blocks
     - **Bold** for emphasis
     - Bullet points for lists
     - ### Headings for sections
   - If no relevant information exists in the context, respond with: *"{no_information}"*

2. **Unrelated Queries:**
   - If the query is not about {domain}, respond with:
     *"{out_of_scope}"*

**Context:**
{context}

**User Query:**
{question}"""


def out_of_scope_reply(domain: str) -> str:
    return OUT_OF_SCOPE_TEMPLATE.format(domain=domain)


def render_context(chunks: Iterable[Chunk]) -> str:
    return "".join(f"Content: {chunk.text}\n\n" for chunk in chunks)


def render_system_prompt(domain: str, chunks: Sequence[Chunk], question: str) -> str:
    return SYSTEM_TEMPLATE.format(
        domain=domain,
        no_information=NO_INFORMATION_REPLY,
        out_of_scope=out_of_scope_reply(domain),
        context=render_context(chunks),
        question=question,
    )


def history_messages(history: Iterable[Mapping[str, str]]) -> list[Message]:
    """Map prior turns onto chat roles; anything that is not the user is the assistant."""
    messages: list[Message] = []
    for turn in history:
        role = "user" if turn.get("role") == "user" else "assistant"
        messages.append({"role": role, "content": str(turn.get("content") or "")})
    return messages


def build_messages(
    *,
    domain: str,
    chunks: Sequence[Chunk],
    history: Iterable[Mapping[str, str]],
    question: str,
) -> list[Message]:
    return [
        {"role": "system", "content": render_system_prompt(domain, chunks, question)},
        *history_messages(history),
        {"role": "user", "content": question},
    ]
