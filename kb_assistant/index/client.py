"""HTTP client wrapper for the upstream knowledge-base content API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import orjson

from kb_assistant.config_loader import SourceConfig

from .snapshot import CorpusSnapshot, fingerprint_payload

LOGGER = logging.getLogger("kb.source")


class ContentSourceError(RuntimeError):
    """Raised when the content source cannot be reached or returns an unexpected payload."""


class ContentSourceClient:
    """Fetches the full corpus from a Strapi-style `{data: [...]}` endpoint."""

    def __init__(
        self,
        *,
        config: SourceConfig | None = None,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or SourceConfig()
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> httpx.AsyncClient:
        if self._session is None:
            timeout = httpx.Timeout(self.config.timeout_seconds)
            self._session = httpx.AsyncClient(timeout=timeout)
        return self._session

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.aclose()
            self._session = None

    async def __aenter__(self) -> "ContentSourceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # -- Public API -----------------------------------------------------

    async def fetch_snapshot(self) -> CorpusSnapshot:
        """Fetch every record, following Strapi pagination when a page size is configured."""
        page_size = self.config.page_size
        params = self._page_params(1) if page_size else None
        body, payload = await self._request_json(self.config.url, params)
        bodies = [body]
        records = self._records_from(payload)

        if page_size:
            page_count = self._page_count(payload)
            for page in range(2, page_count + 1):
                body, payload = await self._request_json(self.config.url, self._page_params(page))
                bodies.append(body)
                records.extend(self._records_from(payload))

        LOGGER.debug("Fetched %s records over %s page(s)", len(records), len(bodies))
        return CorpusSnapshot(
            records=records,
            fingerprint=fingerprint_payload(*bodies),
            pages=len(bodies),
        )

    # -- Internal helpers ------------------------------------------------

    def _page_params(self, page: int) -> dict[str, Any]:
        return {"pagination[page]": page, "pagination[pageSize]": self.config.page_size}

    @staticmethod
    def _records_from(payload: Any) -> list[Any]:
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise ContentSourceError("Content source returned a payload without a `data` list.")
        return list(payload["data"])

    @staticmethod
    def _page_count(payload: dict[str, Any]) -> int:
        meta = payload.get("meta")
        pagination = meta.get("pagination") if isinstance(meta, dict) else None
        if not isinstance(pagination, dict):
            return 1
        try:
            return max(1, int(pagination.get("pageCount") or 1))
        except (TypeError, ValueError):
            return 1

    async def _request_json(
        self, url: str, params: dict[str, Any] | None
    ) -> tuple[bytes, Any]:
        attempts = max(1, self.config.retry_attempts)
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = await self.session.get(
                    url,
                    params=params,
                    headers={"Accept": "application/json"},
                    timeout=self.config.timeout_seconds,
                )
                response.raise_for_status()
                body = response.content
                return body, orjson.loads(body)
            except (httpx.HTTPError, ValueError) as exc:
                last_exc = exc
                if attempt == attempts:
                    break
                delay = self.config.retry_backoff**attempt
                LOGGER.warning(
                    "Content source request to %s failed (%s), attempt %s/%s, retrying in %.1fs",
                    url,
                    exc,
                    attempt,
                    attempts,
                    delay,
                )
                await asyncio.sleep(delay)
        raise ContentSourceError(f"Failed to fetch {url}") from last_exc
