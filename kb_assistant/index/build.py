"""CLI for initialising and refreshing the vector collection from the content source."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from kb_assistant.config_loader import AppConfig, load_app_config, load_models_config

from .chunking import Chunker
from .client import ContentSourceClient
from .embedder_factory import create_embedding_backend
from .embeddings import EmbeddingBackend
from .sync import SyncEngine
from .vector_store import LocalIndexProvider

LOGGER = logging.getLogger("kb.build")

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def build_sync_engine(
    app_config: AppConfig,
    embedder: EmbeddingBackend,
    *,
    source: ContentSourceClient | None = None,
) -> SyncEngine:
    index_root = (PROJECT_ROOT / app_config.index.uri).resolve()
    provider = LocalIndexProvider.from_config(app_config.index, root=index_root, embedder=embedder)
    chunker = Chunker(
        chunk_size=app_config.chunking.chunk_size,
        chunk_overlap=app_config.chunking.chunk_overlap,
    )
    return SyncEngine(
        source=source or ContentSourceClient(config=app_config.source),
        provider=provider,
        chunker=chunker,
        batch_size=app_config.index.batch_size,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Attach to or bootstrap the knowledge-base collection, then sync it with the content source.",
    )
    parser.add_argument(
        "--app-config",
        type=Path,
        default=None,
        help="Path to app.config.yaml (default: data/app.config.yaml).",
    )
    parser.add_argument(
        "--models-config",
        type=Path,
        default=None,
        help="Path to models.yaml (default: data/models.yaml).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Rebuild the collection even when the content fingerprint is unchanged.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(message)s",
    )


async def run_sync(engine: SyncEngine, *, force: bool = False) -> bool:
    index = await engine.ensure_index_ready()
    changed = await (engine.force_rebuild() if force else engine.sync_if_changed())
    stats = engine.last_stats
    if stats is not None:
        LOGGER.info(
            "Fetched %s records, kept %s documents (%s duplicates, %s discarded), %s chunks",
            stats.records_fetched,
            stats.documents_kept,
            stats.duplicates_collapsed,
            stats.records_discarded,
            stats.chunks,
        )
    LOGGER.info("Collection '%s' holds %s entries (changed: %s)", index.name, index.count(), changed)
    return changed


async def _main(args: argparse.Namespace) -> int:
    app_config = load_app_config(args.app_config)
    models_config = load_models_config(args.models_config)
    embedder = create_embedding_backend(models_config)
    engine = build_sync_engine(app_config, embedder)
    try:
        await run_sync(engine, force=args.force)
    finally:
        await engine.source.aclose()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    return asyncio.run(_main(args))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
