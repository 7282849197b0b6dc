"""
In-Memory Chunk Store & Status Store

Process-local implementations used for local development
(CHUNK_STORE_BACKEND=memory) and by the test-suite. Similarity is exact
cosine over every chunk in scope; fine for thousands of chunks, not for
production corpora.

Searchability mirrors the PostgreSQL backend: when the chunk store is given
the status store, only chunks of documents whose latest status is
"completed" are visible to reads.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from edurag.schemas.documents import ProcessingStatus, StatusUpdate
from edurag.schemas.search import SearchScope
from edurag.vectorstore.base import (
    ChunkRecord,
    ChunkStoreBase,
    SimilarChunk,
    StatusStore,
    StoredChunk,
)

logger = logging.getLogger(__name__)


class InMemoryStatusStore(StatusStore):

    def __init__(self) -> None:
        self._history: dict[str, list[StatusUpdate]] = {}

    async def record(
        self,
        document_id: str,
        status:      ProcessingStatus,
        metadata:    dict[str, Any],
    ) -> None:
        update = StatusUpdate(document_id=document_id, status=status, metadata=dict(metadata))
        self._history.setdefault(document_id, []).append(update)
        logger.debug("Status recorded | doc=%s status=%s", document_id, status.value)

    async def latest(self, document_id: str) -> StatusUpdate | None:
        updates = self._history.get(document_id)
        return updates[-1] if updates else None

    def history(self, document_id: str) -> list[StatusUpdate]:
        return list(self._history.get(document_id, []))

    def is_completed(self, document_id: str) -> bool:
        updates = self._history.get(document_id)
        return bool(updates) and updates[-1].status == ProcessingStatus.COMPLETED


class InMemoryChunkStore(ChunkStoreBase):

    def __init__(self, status_store: InMemoryStatusStore | None = None) -> None:
        self._chunks: dict[tuple[str, int], ChunkRecord] = {}
        self._status_store = status_store

    async def upsert_chunk(self, record: ChunkRecord) -> None:
        self._chunks[(record.document_id, record.chunk_index)] = record

    async def delete_by_document(self, document_id: str) -> int:
        keys = [key for key in self._chunks if key[0] == document_id]
        for key in keys:
            del self._chunks[key]
        return len(keys)

    async def query_similar(
        self,
        vector:    list[float],
        scope:     SearchScope,
        threshold: float,
        limit:     int,
    ) -> list[SimilarChunk]:
        scored: list[SimilarChunk] = []
        for record in self._visible(scope):
            similarity = cosine_similarity(vector, record.embedding)
            if similarity >= threshold:
                scored.append(SimilarChunk(
                    id=record.id,
                    document_id=record.document_id,
                    chunk_index=record.chunk_index,
                    content=record.content,
                    similarity=similarity,
                ))
        scored.sort(key=lambda c: c.similarity, reverse=True)
        return scored[:limit]

    async def list_chunks(self, scope: SearchScope) -> list[StoredChunk]:
        return [
            StoredChunk(
                id=record.id,
                document_id=record.document_id,
                chunk_index=record.chunk_index,
                content=record.content,
            )
            for record in self._visible(scope)
        ]

    async def count_chunks(self, scope: SearchScope) -> int:
        return len(self._visible(scope))

    def records_for(self, document_id: str) -> list[ChunkRecord]:
        """All stored chunks of one document regardless of status, in index order."""
        return sorted(
            (r for r in self._chunks.values() if r.document_id == document_id),
            key=lambda r: r.chunk_index,
        )

    def _visible(self, scope: SearchScope) -> list[ChunkRecord]:
        records = [
            record for record in self._chunks.values()
            if _in_scope(record, scope)
            and (self._status_store is None or self._status_store.is_completed(record.document_id))
        ]
        records.sort(key=lambda r: (r.document_id, r.chunk_index))
        return records


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _in_scope(record: ChunkRecord, scope: SearchScope) -> bool:
    if scope.activity_id and record.activity_id != scope.activity_id:
        return False
    if scope.document_ids and record.document_id not in scope.document_ids:
        return False
    return True


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
