"""
SQLAlchemy ORM Models — Documents & Chunks

Using SQLAlchemy mapped classes (2.x style) for full async support.

documents        one row per uploaded file; processing_status is owned by the
                 active processing run
document_chunks  one row per chunk; (document_id, chunk_index) is unique and
                 the embedding lives in a pgvector column
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from edurag.core.config import settings


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    Tracks a single uploaded file from upload → extraction → chunking → embedding.

    State machine (processing_status column):
        uploading  — registered, processing not yet started
        extracting — fetching the file and pulling out text
        chunking   — building chunks
        embedding  — embedding and persisting chunks
        completed  — chunks searchable
        failed     — see processing_metadata.error / errorCode
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('uploading', 'extracting', 'chunking', "
            "'embedding', 'completed', 'failed')",
            name="documents_processing_status_check",
        ),
        Index("idx_documents_activity_id", "activity_id"),
        Index("idx_documents_status",      "processing_status"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)

    # Registration details; filled by the upload surface or the first transition
    user_id:      Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    activity_id:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url:     Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processing_status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="uploading",
        server_default="uploading",
    )
    processing_metadata: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Metadata of the latest transition: timings, counts, error details",
    )

    # Language detection: written once per run
    detected_language:         Mapped[Optional[str]]   = mapped_column(Text, nullable=True)
    language_confidence:       Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    language_detection_method: Mapped[Optional[str]]   = mapped_column(Text, nullable=True)

    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Document id={self.id} status={self.processing_status}>"


# ---------------------------------------------------------------------------
# Chunk model: document_chunks
# ---------------------------------------------------------------------------

class DocumentChunk(Base):
    """One text chunk of a Document together with its embedding."""

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        Index("idx_document_chunks_document_id", "document_id"),
        Index("idx_document_chunks_activity_id", "activity_id"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)   # sha256(document_id:chunk_index)
    document_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    activity_id:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chunk_index:  Mapped[int]  = mapped_column(Integer, nullable=False)
    content:      Mapped[str]  = mapped_column(Text, nullable=False)
    language:     Mapped[str]  = mapped_column(Text, nullable=False, default="en")
    start_offset: Mapped[int]  = mapped_column(Integer, nullable=False, default=0)
    end_offset:   Mapped[int]  = mapped_column(Integer, nullable=False, default=0)
    embedding:    Mapped[list] = mapped_column(Vector(settings.embedding_dimensions), nullable=False)
    chunk_metadata: Mapped[dict] = mapped_column(
        "metadata",                 # PostgreSQL column name stays 'metadata'
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
