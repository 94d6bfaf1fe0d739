"""FastAPI entry point for the knowledge-base assistant service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import routes
from .config_loader import AppConfig, ModelsConfig, load_app_config, load_models_config
from .index import create_embedding_backend
from .index.build import build_sync_engine
from .llm_client import ChatModel
from .rag import AnswerPipeline

LOGGER = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    aclose = getattr(app.state.sync_engine.source, "aclose", None)
    if aclose is not None:
        await aclose()
        LOGGER.info("Closed content source client")


def create_app(
    app_config: AppConfig | None = None,
    models_config: ModelsConfig | None = None,
) -> FastAPI:
    app_config = app_config or load_app_config()
    models_config = models_config or load_models_config()
    configure_logging(app_config.server.log_level)

    app = FastAPI(
        title="Knowledge-base Assistant",
        description="Answers questions from a vector index kept in sync with the knowledge base.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    embedder = create_embedding_backend(models_config)
    sync_engine = build_sync_engine(app_config, embedder)
    chat_model = ChatModel(model_config=models_config.llm_model.model_dump())
    answer_pipeline = AnswerPipeline(
        sync_engine=sync_engine,
        chat_model=chat_model,
        domain=app_config.assistant.domain,
        top_k=app_config.retrieval.top_k,
    )

    app.state.app_config = app_config
    app.state.models_config = models_config
    app.state.sync_engine = sync_engine
    app.state.chat_model = chat_model
    app.state.answer_pipeline = answer_pipeline

    app.include_router(routes.router)

    LOGGER.info("Configured collection '%s' from %s", app_config.index.collection, app_config.source.url)
    return app


def run() -> None:  # pragma: no cover - server entry point
    import uvicorn

    app_config = load_app_config()
    uvicorn.run(create_app(app_config), host="0.0.0.0", port=app_config.server.port)
