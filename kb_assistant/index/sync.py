"""Keeps the vector collection in step with the upstream content source."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Protocol, Sequence

from .chunking import Chunker
from .models import CanonicalDocument, Chunk
from .normalizer import dedupe_documents, normalize_record
from .snapshot import CorpusSnapshot
from .vector_store import CollectionNotFoundError, VectorIndex, VectorIndexProvider

LOGGER = logging.getLogger("kb.sync")

DEFAULT_BATCH_SIZE = 100


class SnapshotSource(Protocol):
    async def fetch_snapshot(self) -> CorpusSnapshot: ...


@dataclass(slots=True)
class SyncStats:
    records_fetched: int = 0
    documents_kept: int = 0
    duplicates_collapsed: int = 0
    chunks: int = 0
    discarded: Counter = field(default_factory=Counter)

    @property
    def records_discarded(self) -> int:
        return sum(self.discarded.values())


@dataclass(slots=True)
class PreparedCorpus:
    documents: list[CanonicalDocument]
    chunks: list[Chunk]
    stats: SyncStats


class RefreshStatus(str, Enum):
    UP_TO_DATE = "up_to_date"
    REFRESHED = "refreshed"
    FAILED = "failed"


@dataclass(slots=True)
class RefreshOutcome:
    status: RefreshStatus
    reason: str | None = None

    @property
    def stale(self) -> bool:
        return self.status is RefreshStatus.FAILED


@dataclass(slots=True)
class IndexContext:
    """Explicitly owned sync state: the live index handle, its fingerprint and their guards."""

    handle: VectorIndex | None = None
    fingerprint: str | None = None
    init_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    inflight_sync: asyncio.Task | None = None

    @property
    def initialized(self) -> bool:
        return self.handle is not None


def prepare_corpus(records: Iterable[Any], chunker: Chunker) -> PreparedCorpus:
    """Normalize, dedupe by documentId and chunk a raw upstream fetch."""
    stats = SyncStats()
    normalized: list[CanonicalDocument] = []
    for raw in records:
        stats.records_fetched += 1
        result = normalize_record(raw)
        if result.document is None:
            stats.discarded[result.reason.value] += 1
            continue
        normalized.append(result.document)

    documents = dedupe_documents(normalized)
    chunks = chunker.split_documents(documents)
    stats.documents_kept = len(documents)
    stats.duplicates_collapsed = len(normalized) - len(documents)
    stats.chunks = len(chunks)
    if stats.discarded:
        LOGGER.debug("Discarded upstream records: %s", dict(stats.discarded))
    return PreparedCorpus(documents=documents, chunks=chunks, stats=stats)


class SyncEngine:
    """Bootstraps, attaches to and refreshes the vector collection."""

    def __init__(
        self,
        *,
        source: SnapshotSource,
        provider: VectorIndexProvider,
        chunker: Chunker,
        batch_size: int = DEFAULT_BATCH_SIZE,
        context: IndexContext | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be a positive integer.")
        self.source = source
        self.provider = provider
        self.chunker = chunker
        self.batch_size = batch_size
        self.context = context or IndexContext()
        self.last_stats: SyncStats | None = None

    @property
    def index_initialized(self) -> bool:
        return self.context.initialized

    async def ensure_index_ready(self) -> VectorIndex:
        """Return the live index, attaching to or bootstrapping the collection on first use."""
        if self.context.handle is not None:
            return self.context.handle
        async with self.context.init_lock:
            if self.context.handle is not None:
                return self.context.handle
            try:
                handle = await self.provider.attach()
            except CollectionNotFoundError:
                LOGGER.info("Collection does not exist, bootstrapping from the content source")
                handle = await self._bootstrap()
            else:
                # Attaching skips fingerprinting; the first sync compares against nothing.
                self.context.fingerprint = None
            self.context.handle = handle
            return handle

    async def sync_if_changed(self) -> bool:
        """Re-index when the upstream fingerprint moved; concurrent callers share one run."""
        task = self.context.inflight_sync
        if task is None or task.done():
            task = asyncio.ensure_future(self._sync_once())
            self.context.inflight_sync = task
            task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    async def try_refresh(self) -> RefreshOutcome:
        try:
            changed = await self.sync_if_changed()
        except Exception as exc:  # noqa: BLE001 - reported as a stale outcome
            LOGGER.warning("Failed to check for content updates: %s", exc)
            return RefreshOutcome(RefreshStatus.FAILED, reason=str(exc) or type(exc).__name__)
        return RefreshOutcome(RefreshStatus.REFRESHED if changed else RefreshStatus.UP_TO_DATE)

    async def force_rebuild(self) -> bool:
        await self.ensure_index_ready()
        inflight = self.context.inflight_sync
        if inflight is not None and not inflight.done():
            # Let a running sync record its fingerprint first, then discard it.
            await asyncio.wait([inflight])
        self.context.fingerprint = None
        return await self.sync_if_changed()

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self.context.inflight_sync is task:
            self.context.inflight_sync = None
        if not task.cancelled():
            # Retrieved so an unawaited failure is not reported as never retrieved.
            task.exception()

    async def _bootstrap(self) -> VectorIndex:
        snapshot = await self.source.fetch_snapshot()
        corpus = prepare_corpus(snapshot.records, self.chunker)
        LOGGER.info("Creating new collection with %s chunks", len(corpus.chunks))
        handle = await self.provider.create_from_documents(corpus.chunks)
        self.context.fingerprint = snapshot.fingerprint
        self.last_stats = corpus.stats
        return handle

    async def _sync_once(self) -> bool:
        index = await self.ensure_index_ready()
        snapshot = await self.source.fetch_snapshot()
        if snapshot.fingerprint == self.context.fingerprint:
            LOGGER.info("Data unchanged, skipping update")
            return False

        LOGGER.info("Content changed, updating collection '%s'", index.name)
        corpus = prepare_corpus(snapshot.records, self.chunker)
        await index.delete_all()
        await self._insert_batches(index, corpus.chunks)
        await index.flush()

        self.context.fingerprint = snapshot.fingerprint
        self.last_stats = corpus.stats
        LOGGER.info("Updated collection with %s chunks", len(corpus.chunks))
        return True

    async def _insert_batches(self, index: VectorIndex, chunks: Sequence[Chunk]) -> None:
        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size
        for number, start in enumerate(range(0, len(chunks), self.batch_size), start=1):
            await index.add_documents(chunks[start : start + self.batch_size])
            LOGGER.info("Added batch %s of %s", number, total_batches)
