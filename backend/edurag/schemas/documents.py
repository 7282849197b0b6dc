"""
Document Processing — Pydantic Request/Response Schemas

Covers the full lifecycle of a document run:
  - Ingestion request validation (including partial chunking overrides)
  - Ingestion result returned by the orchestrator, the worker and the API
  - Processing status state machine and the per-transition StatusUpdate
  - Language detection result persisted once per document
  - Structured error bodies shared by every endpoint

Wire format:
  Python attributes are snake_case; JSON keys are camelCase
  (documentId, chunksCreated, processingTimeMs, ...). Both spellings are
  accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from edurag.core.exceptions import InvalidChunkingConfig


class CamelModel(BaseModel):
    """Base model serialising to camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Processing pipeline state machine
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    """
    Maps to documents.processing_status.
    Transitions: uploading → extracting → chunking → embedding → completed
                 any non-terminal state → failed
    """
    UPLOADING  = "uploading"    # registered, run not started
    EXTRACTING = "extracting"   # fetching the file and pulling out text
    CHUNKING   = "chunking"     # sentence splitting + chunk construction
    EMBEDDING  = "embedding"    # embedding and persisting chunks
    COMPLETED  = "completed"    # chunks searchable
    FAILED     = "failed"       # see metadata.error / metadata.errorCode

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)

    def can_transition_to(self, target: "ProcessingStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.UPLOADING:  frozenset({ProcessingStatus.EXTRACTING, ProcessingStatus.FAILED}),
    ProcessingStatus.EXTRACTING: frozenset({ProcessingStatus.CHUNKING,   ProcessingStatus.FAILED}),
    ProcessingStatus.CHUNKING:   frozenset({ProcessingStatus.EMBEDDING,  ProcessingStatus.FAILED}),
    ProcessingStatus.EMBEDDING:  frozenset({ProcessingStatus.COMPLETED,  ProcessingStatus.FAILED}),
    ProcessingStatus.COMPLETED:  frozenset(),
    ProcessingStatus.FAILED:     frozenset(),
}


class StatusUpdate(CamelModel):
    """One processing-status write, as emitted at every transition."""
    document_id: str
    status:      ProcessingStatus
    metadata:    dict[str, Any]   = Field(default_factory=dict)
    recorded_at: datetime         = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Chunking configuration
# ---------------------------------------------------------------------------

class ChunkingConfig(CamelModel):
    """
    Resolved chunking parameters (sizes are in characters).

    Invariants: min_chunk_size < max_chunk_size, 0 <= chunk_overlap < max_chunk_size.
    """
    max_chunk_size:     int  = Field(1000, ge=1)
    min_chunk_size:     int  = Field(100,  ge=1)
    chunk_overlap:      int  = Field(200,  ge=0)
    preserve_paragraphs: bool = True

    @model_validator(mode="after")
    def _check_sizes(self) -> "ChunkingConfig":
        if self.min_chunk_size >= self.max_chunk_size:
            raise ValueError("min_chunk_size must be smaller than max_chunk_size")
        if self.chunk_overlap >= self.max_chunk_size:
            raise ValueError("chunk_overlap must be smaller than max_chunk_size")
        return self

    @classmethod
    def defaults(cls) -> "ChunkingConfig":
        from edurag.core.config import settings
        return cls(
            max_chunk_size=settings.chunk_max_size,
            min_chunk_size=settings.chunk_min_size,
            chunk_overlap=settings.chunk_overlap,
            preserve_paragraphs=settings.chunk_preserve_paragraphs,
        )

    @classmethod
    def resolve(
        cls,
        overrides: "ChunkingConfigOverrides | None",
        base:      "ChunkingConfig | None" = None,
    ) -> "ChunkingConfig":
        """
        Merge a partial override onto the defaults.

        Raises:
            InvalidChunkingConfig: the merged values break a size invariant.
        """
        base = base or cls.defaults()
        if overrides is None:
            return base
        merged = {**base.model_dump(), **overrides.model_dump(exclude_none=True)}
        try:
            return cls(**merged)
        except ValidationError as exc:
            reasons = "; ".join(err["msg"] for err in exc.errors())
            raise InvalidChunkingConfig(
                message="Invalid chunking configuration",
                detail=reasons,
            ) from exc


class ChunkingConfigOverrides(CamelModel):
    """Partial ChunkingConfig supplied on an ingestion request."""
    max_chunk_size:      int | None  = None
    min_chunk_size:      int | None  = None
    chunk_overlap:       int | None  = None
    preserve_paragraphs: bool | None = None


# ---------------------------------------------------------------------------
# Language detection
# ---------------------------------------------------------------------------

class DetectionMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL    = "manual"
    FALLBACK  = "fallback"


class LanguageAlternative(CamelModel):
    language:   str
    confidence: float = Field(..., ge=0.0, le=1.0)


class LanguageDetectionResult(CamelModel):
    """Produced once per document; never mutated after it is recorded."""
    detected_language: str
    confidence:        float                     = Field(..., ge=0.0, le=1.0)
    method:            DetectionMethod
    alternatives:      list[LanguageAlternative] = Field(default_factory=list, max_length=2)


# ---------------------------------------------------------------------------
# Ingestion request / result
# ---------------------------------------------------------------------------

class IngestionRequest(CamelModel):
    document_id:               str = Field(..., min_length=1)
    file_url:                  str = Field(..., min_length=1, description="Location the extractor fetches")
    user_id:                   str = Field(..., min_length=1)
    activity_id:               str | None = None
    content_type:              str | None = Field(None, description="MIME hint; sniffed when absent")
    language:                  str | None = Field(None, description="Explicit language code; skips detection")
    chunking_config:           ChunkingConfigOverrides | None = None
    enable_language_detection: bool = True


class IngestionResult(CamelModel):
    success:            bool
    document_id:        str
    chunks_created:     int   = 0
    processing_time_ms: int   = 0
    language:           str | None = None
    language_detection: LanguageDetectionResult | None = None
    error:              str | None = None
    error_code:         str | None = None
    retryable:          bool = False


class ProcessingAccepted(CamelModel):
    """Returned when a run is queued for the background worker (HTTP 202)."""
    document_id: str
    task_id:     str | None = None
    status:      ProcessingStatus = ProcessingStatus.UPLOADING


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str         = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code:    str              = Field(..., description="Stable machine-readable code")
    message:       str              = Field(..., description="Human-readable summary")
    details:       list[ErrorDetail] = Field(default_factory=list)
    request_id:    str | None       = Field(None, description="Trace ID for log correlation")
