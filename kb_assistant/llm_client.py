"""Chat-completion client for the configured language model backend."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Sequence

import httpx

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class ChatModelError(RuntimeError):
    """Raised when the language model keeps failing or returns nothing usable."""


class ChatModel:
    """Thin wrapper around the configured LLM backend with bounded retries."""

    def __init__(
        self,
        model_config: Dict[str, Any],
        *,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.model_config = model_config
        self.backend = (model_config.get("backend") or "ollama").lower()
        self.model_name = model_config.get("name")
        self.endpoint = (model_config.get("endpoint") or self._default_endpoint()).rstrip("/")
        self.timeout = float(model_config.get("timeout", 30.0))
        self.temperature = float(model_config.get("temperature", 0.7))
        self.max_retries = int(model_config.get("max_retries", 3))
        self.retry_backoff = float(model_config.get("retry_backoff", 1.0))
        self._session = session

    def _default_endpoint(self) -> str:
        if self.backend == "openai":
            return "https://api.openai.com"
        return "http://localhost:11434"

    async def complete(self, messages: Sequence[Message]) -> str:
        if not self.model_name:
            raise ChatModelError("No language model configured.")
        if self.backend not in {"ollama", "openai"}:
            raise ChatModelError(f"Unsupported LLM backend '{self.backend}'.")

        attempts = max(1, self.max_retries)
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                text = await self._request(list(messages))
            except httpx.TimeoutException as exc:
                last_exc = exc
                logger.warning(
                    "LLM request timed out (%ss) via %s, attempt %s/%s",
                    self.timeout,
                    self.model_name,
                    attempt,
                    attempts,
                )
            except httpx.HTTPStatusError as exc:
                last_exc = exc
                logger.warning(
                    "LLM HTTP %s via %s, attempt %s/%s: %s",
                    exc.response.status_code,
                    self.model_name,
                    attempt,
                    attempts,
                    exc.response.text[:200],
                )
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
                last_exc = exc
                logger.warning(
                    "LLM request failed via %s, attempt %s/%s (%s): %s",
                    self.model_name,
                    attempt,
                    attempts,
                    type(exc).__name__,
                    exc,
                )
            else:
                if text:
                    return text
                last_exc = ChatModelError("empty completion")
                logger.warning("LLM returned empty text via %s", self.model_name)
            if attempt < attempts and self.retry_backoff:
                await asyncio.sleep(self.retry_backoff * attempt)

        raise ChatModelError(f"LLM completion via {self.model_name} failed") from last_exc

    async def _request(self, messages: list[Message]) -> str:
        if self._session is not None:
            return await self._post(self._session, messages)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._post(client, messages)

    async def _post(self, client: httpx.AsyncClient, messages: list[Message]) -> str:
        if self.backend == "openai":
            response = await client.post(
                f"{self.endpoint}/v1/chat/completions",
                json={
                    "model": self.model_name,
                    "messages": messages,
                    "temperature": self.temperature,
                },
                headers={"Authorization": f"Bearer {os.environ.get('OPENAI_API_KEY', '')}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
            return (data["choices"][0]["message"].get("content") or "").strip()

        response = await client.post(
            f"{self.endpoint}/api/chat",
            json={
                "model": self.model_name,
                "messages": messages,
                "stream": False,
                "options": {"temperature": self.temperature},
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        return ((data.get("message") or {}).get("content") or "").strip()
