"""
Chunk Store Factory

Selects the correct backend (postgres | memory) based on config.
The rest of the app only imports get_chunk_store() / get_status_store() —
never touches the concrete classes directly.

The memory backend shares one process-wide status store with its chunk
store so that only completed documents are searchable, as in PostgreSQL.
"""

from __future__ import annotations

from functools import lru_cache

from edurag.core.config import settings
from edurag.vectorstore.base import ChunkStoreBase, StatusStore

VALID_BACKENDS = ("postgres", "memory")


def get_chunk_store() -> ChunkStoreBase:
    backend = _backend()

    if backend == "postgres":
        from edurag.vectorstore.postgres_store import PostgresChunkStore
        return PostgresChunkStore()

    return _memory_stores()[0]


def get_status_store() -> StatusStore:
    backend = _backend()

    if backend == "postgres":
        from edurag.vectorstore.postgres_store import PostgresStatusStore
        return PostgresStatusStore()

    return _memory_stores()[1]


def _backend() -> str:
    backend = settings.chunk_store_backend.lower()
    if backend not in VALID_BACKENDS:
        raise ValueError(
            f"Unknown chunk store backend: '{backend}'. "
            f"Valid options: {', '.join(VALID_BACKENDS)}"
        )
    return backend


@lru_cache(maxsize=1)
def _memory_stores():
    from edurag.vectorstore.memory_store import InMemoryChunkStore, InMemoryStatusStore
    status_store = InMemoryStatusStore()
    return InMemoryChunkStore(status_store=status_store), status_store
