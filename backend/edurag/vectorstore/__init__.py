from edurag.vectorstore.base import (
    ChunkRecord,
    ChunkStoreBase,
    SimilarChunk,
    StatusSink,
    StatusStore,
    StoredChunk,
)
from edurag.vectorstore.factory import get_chunk_store, get_status_store

__all__ = [
    "ChunkRecord",
    "ChunkStoreBase",
    "SimilarChunk",
    "StatusSink",
    "StatusStore",
    "StoredChunk",
    "get_chunk_store",
    "get_status_store",
]
