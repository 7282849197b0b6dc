"""
PostgreSQL + pgvector Chunk Store & Status Store

Schema: see edurag.models.documents (documents, document_chunks).

Similarity:
    similarity = 1 - (embedding <=> query)        -- <=> is cosine distance
    WHERE  distance <= 1 - threshold
    ORDER  BY distance
    LIMIT  :limit

Only chunks whose parent document is "completed" are searchable, so the
chunks written during an in-flight (or failed) run are never returned.

Every store method opens its own short transaction. Driver errors are
translated: writes raise PersistenceError, reads raise SearchUnavailable.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy import and_, delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edurag.core.exceptions import PersistenceError, SearchUnavailable
from edurag.db.session import get_session_factory
from edurag.models.documents import Document, DocumentChunk
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

SessionFactory = Callable[[], AsyncSession]


# ---------------------------------------------------------------------------
# Chunk store
# ---------------------------------------------------------------------------

class PostgresChunkStore(ChunkStoreBase):

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def upsert_chunk(self, record: ChunkRecord) -> None:
        values = {
            "id":             record.id,
            "document_id":    record.document_id,
            "activity_id":    record.activity_id,
            "chunk_index":    record.chunk_index,
            "content":        record.content,
            "language":       record.language,
            "start_offset":   record.start_offset,
            "end_offset":     record.end_offset,
            "embedding":      record.embedding,
            "metadata":       record.metadata,
        }
        stmt = pg_insert(DocumentChunk.__table__).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DocumentChunk.document_id, DocumentChunk.chunk_index],
            set_={key: stmt.excluded[key] for key in values if key not in ("document_id", "chunk_index")},
        )
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error(
                "Chunk upsert failed | doc=%s index=%d error=%s",
                record.document_id, record.chunk_index, exc,
            )
            raise PersistenceError(
                message="Failed to persist chunk",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

    async def delete_by_document(self, document_id: str) -> int:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                message="Failed to delete chunks",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Chunks deleted | doc=%s count=%d", document_id, deleted)
        return deleted

    async def query_similar(
        self,
        vector:    list[float],
        scope:     SearchScope,
        threshold: float,
        limit:     int,
    ) -> list[SimilarChunk]:
        distance = DocumentChunk.embedding.cosine_distance(vector)
        stmt = (
            select(
                DocumentChunk.id,
                DocumentChunk.document_id,
                DocumentChunk.chunk_index,
                DocumentChunk.content,
                (1 - distance).label("similarity"),
            )
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(_searchable(scope), distance <= 1 - threshold)
            .order_by(distance)
            .limit(limit)
        )
        rows = await self._read(stmt)
        return [
            SimilarChunk(
                id=row.id,
                document_id=row.document_id,
                chunk_index=row.chunk_index,
                content=row.content,
                similarity=float(row.similarity),
            )
            for row in rows
        ]

    async def list_chunks(self, scope: SearchScope) -> list[StoredChunk]:
        stmt = (
            select(
                DocumentChunk.id,
                DocumentChunk.document_id,
                DocumentChunk.chunk_index,
                DocumentChunk.content,
            )
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(_searchable(scope))
            .order_by(DocumentChunk.document_id, DocumentChunk.chunk_index)
        )
        rows = await self._read(stmt)
        return [
            StoredChunk(
                id=row.id,
                document_id=row.document_id,
                chunk_index=row.chunk_index,
                content=row.content,
            )
            for row in rows
        ]

    async def count_chunks(self, scope: SearchScope) -> int:
        stmt = (
            select(func.count(DocumentChunk.id))
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(_searchable(scope))
        )
        rows = await self._read(stmt)
        return int(rows[0][0]) if rows else 0

    async def _read(self, stmt) -> list:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.all())
        except SQLAlchemyError as exc:
            logger.error("Chunk query failed | error=%s", exc)
            raise SearchUnavailable(
                message="Chunk index is unavailable",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc


def _searchable(scope: SearchScope):
    clauses = [Document.processing_status == ProcessingStatus.COMPLETED.value]
    if scope.activity_id:
        clauses.append(DocumentChunk.activity_id == scope.activity_id)
    if scope.document_ids:
        clauses.append(DocumentChunk.document_id.in_(scope.document_ids))
    return and_(*clauses)


# ---------------------------------------------------------------------------
# Status store
# ---------------------------------------------------------------------------

# metadata key → documents column, copied when present in a transition
_METADATA_COLUMNS = {
    "userId":      "user_id",
    "activityId":  "activity_id",
    "fileUrl":     "file_url",
    "contentType": "content_type",
    "language":    "detected_language",
    "chunksCreated": "chunk_count",
}


class PostgresStatusStore(StatusStore):
    """
    One INSERT ... ON CONFLICT DO UPDATE per transition, so a document that
    was never registered by the upload surface still gets a status row.
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def record(
        self,
        document_id: str,
        status:      ProcessingStatus,
        metadata:    dict[str, Any],
    ) -> None:
        values: dict[str, Any] = {
            "id":                  document_id,
            "processing_status":   status.value,
            "processing_metadata": metadata,
        }
        for key, column in _METADATA_COLUMNS.items():
            if metadata.get(key) is not None:
                values[column] = metadata[key]

        detection = metadata.get("languageDetection")
        if detection:
            values["language_confidence"]       = detection.get("confidence")
            values["language_detection_method"] = detection.get("method")

        stmt = pg_insert(Document.__table__).values(**values)
        update_set = {key: stmt.excluded[key] for key in values if key != "id"}
        update_set["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=[Document.id], set_=update_set)

        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error(
                "Status write failed | doc=%s status=%s error=%s",
                document_id, status.value, exc,
            )
            raise PersistenceError(
                message="Failed to record processing status",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

    async def latest(self, document_id: str) -> StatusUpdate | None:
        try:
            async with self._session_factory() as session:
                doc = await session.get(Document, document_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                message="Failed to read processing status",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

        if doc is None:
            return None
        return StatusUpdate(
            document_id=doc.id,
            status=ProcessingStatus(doc.processing_status),
            metadata=doc.processing_metadata or {},
            recorded_at=doc.updated_at,
        )
