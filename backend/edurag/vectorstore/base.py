"""
Chunk Store & Status Sink — Abstract Base

Every concrete backend (PostgreSQL + pgvector, in-memory) implements these
interfaces. The orchestrators only speak this protocol, so backends are
swappable without touching pipeline or API code.

Consistency contract (enforced by ALL implementations):
  - Chunks are keyed by (document_id, chunk_index); writing the same key
    twice replaces the earlier row.
  - delete_by_document removes every chunk of a document, so a re-run or a
    failed run never leaves a stale partial set behind.
  - query_similar returns only chunks of documents whose latest status is
    "completed" (where the backend can see statuses).
  - Each StatusSink.record call is a single write.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from edurag.processing.chunking import ChunkCandidate
from edurag.schemas.documents import ProcessingStatus, StatusUpdate
from edurag.schemas.search import SearchScope


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class ChunkRecord:
    """A single chunk plus its embedding, ready to persist."""
    id:           str            # deterministic: sha256(document_id:chunk_index)
    document_id:  str
    chunk_index:  int
    content:      str
    embedding:    list[float]
    language:     str
    start_offset: int
    end_offset:   int
    activity_id:  str | None = None
    metadata:     dict       = field(default_factory=dict)

    @classmethod
    def from_candidate(
        cls,
        document_id: str,
        candidate:   ChunkCandidate,
        embedding:   list[float],
        activity_id: str | None = None,
    ) -> "ChunkRecord":
        return cls(
            id=make_chunk_id(document_id, candidate.chunk_index),
            document_id=document_id,
            chunk_index=candidate.chunk_index,
            content=candidate.content,
            embedding=embedding,
            language=candidate.language,
            start_offset=candidate.start_offset,
            end_offset=candidate.end_offset,
            activity_id=activity_id,
            metadata=candidate.metadata(),
        )


@dataclass
class StoredChunk:
    """A persisted chunk as returned by reads (no embedding)."""
    id:          str
    document_id: str
    chunk_index: int
    content:     str


@dataclass
class SimilarChunk(StoredChunk):
    """One result returned from a similarity search."""
    similarity: float = 0.0     # cosine similarity, higher is closer


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    """
    Deterministic chunk ID: sha256(document_id:chunk_index).
    Re-processing a document writes the same IDs instead of duplicates.
    """
    raw = f"{document_id}:{chunk_index}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


# ---------------------------------------------------------------------------
# Abstract interfaces
# ---------------------------------------------------------------------------

class ChunkStoreBase(ABC):
    """Chunk persistence and similarity search."""

    @abstractmethod
    async def upsert_chunk(self, record: ChunkRecord) -> None:
        """
        Insert or replace one chunk.
        Raises PersistenceError when the write fails.
        """

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete ALL chunks belonging to a document. Returns the number removed."""

    @abstractmethod
    async def query_similar(
        self,
        vector:    list[float],
        scope:     SearchScope,
        threshold: float,
        limit:     int,
    ) -> list[SimilarChunk]:
        """
        Chunks in `scope` with similarity ≥ threshold, best first, at most `limit`.
        Raises SearchUnavailable when the index cannot be queried.
        """

    @abstractmethod
    async def list_chunks(self, scope: SearchScope) -> list[StoredChunk]:
        """Every searchable chunk in `scope`, in (document, chunk_index) order."""

    @abstractmethod
    async def count_chunks(self, scope: SearchScope) -> int:
        """Number of searchable chunks in `scope`."""


class StatusSink(ABC):
    """Receives every processing-status transition."""

    @abstractmethod
    async def record(
        self,
        document_id: str,
        status:      ProcessingStatus,
        metadata:    dict[str, Any],
    ) -> None:
        """Persist one transition as a single write."""


class StatusStore(StatusSink):
    """A StatusSink that can also be read back (status endpoint)."""

    @abstractmethod
    async def latest(self, document_id: str) -> StatusUpdate | None:
        """Most recent transition for a document, or None if never recorded."""
