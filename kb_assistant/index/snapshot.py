"""Content fingerprints of the upstream corpus, used to decide whether re-indexing is needed."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def fingerprint_payload(*payloads: bytes) -> str:
    """Digest raw response bodies in fetch order; byte-identical fetches digest identically."""
    digest = hashlib.sha256()
    for payload in payloads:
        digest.update(len(payload).to_bytes(8, "big"))
        digest.update(payload)
    return digest.hexdigest()


@dataclass(slots=True)
class CorpusSnapshot:
    records: list[Any]
    fingerprint: str
    pages: int = 1
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self.records)
