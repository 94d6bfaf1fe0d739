"""API routers for the knowledge-base assistant."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config_loader import AppConfig
from .index.sync import SyncEngine
from .rag import AnswerPipeline

router = APIRouter()
logger = logging.getLogger(__name__)

INDEX_STATUS_HEADER = "X-Index-Status"
GENERIC_ERROR_MESSAGE = "An unexpected error occurred"


# --------------------------------------------------------------------------- #
# Pydantic schemas
# --------------------------------------------------------------------------- #


class ChatTurn(BaseModel):
    role: str | None = None
    content: str | None = None

    @field_validator("role", "content", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return value if value is None or isinstance(value, str) else str(value)


class ChatRequest(BaseModel):
    chat_history: list[ChatTurn] = Field(alias="chatHistory", default_factory=list)
    input: str | None = None

    @field_validator("chat_history", mode="before")
    @classmethod
    def _tolerate_history(cls, value: Any) -> list[Any]:
        # Anything that is not a list of turn objects is treated as no history.
        if not isinstance(value, list):
            return []
        return [turn for turn in value if isinstance(turn, dict)]


class ContextItem(BaseModel):
    content: str
    title: str | None = None
    id: Any = None
    document_id: Any = Field(alias="documentId", default=None)


class ChatResponse(BaseModel):
    answer: str
    context: list[ContextItem]


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #


def _request_state(request: Request):
    return request.app.state


def _error_message(config: AppConfig, exc: Exception) -> str:
    if config.server.is_production:
        return GENERIC_ERROR_MESSAGE
    return str(exc) or type(exc).__name__


def _public_config(config: AppConfig) -> dict[str, Any]:
    return config.model_dump(by_alias=True)


# --------------------------------------------------------------------------- #
# Endpoints
# --------------------------------------------------------------------------- #


@router.post("/chat", response_model=ChatResponse)
async def chat(request: Request, payload: ChatRequest) -> JSONResponse:
    state = _request_state(request)
    question = (payload.input or "").strip()
    if not question:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid input", "message": "No input provided"},
        )

    pipeline: AnswerPipeline = state.answer_pipeline
    history = [turn.model_dump() for turn in payload.chat_history]
    try:
        result = await pipeline.answer(history, payload.input)
    except Exception as exc:  # noqa: BLE001 - surfaced as a 500 payload
        logger.exception("Chat request error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": _error_message(state.app_config, exc),
            },
        )

    headers = {}
    if result.refresh is not None:
        headers[INDEX_STATUS_HEADER] = "stale" if result.refresh.stale else "current"
    return JSONResponse(content=result.to_json_dict(), headers=headers)


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    state = _request_state(request)
    sync_engine: SyncEngine = state.sync_engine
    try:
        await sync_engine.ensure_index_ready()
    except Exception as exc:  # noqa: BLE001 - reported through the health payload
        logger.warning("Health check failed to initialise the index: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error", "error": str(exc) or type(exc).__name__},
        )
    return JSONResponse(
        content={
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "indexInitialized": sync_engine.index_initialized,
            "config": _public_config(state.app_config),
        }
    )
