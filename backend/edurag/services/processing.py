"""
Processing Orchestrator

Drives one document through the pipeline and owns its processing status:

  uploading ──▶ extracting ──▶ chunking ──▶ embedding ──▶ completed
      │             │              │             │
      └─────────────┴──────────────┴─────────────┴──────▶ failed

Per run:
  0. Resolve the chunking config and any explicit language (validation
     failures end the run before any external call)
  1. extracting — clear chunks left by earlier runs, fetch + extract text
  2. language   — explicit code, else LanguageDetector (once), else default
  3. chunking   — ChunkingEngine; zero chunks is a failure
  4. embedding  — sub-batches from EmbeddingClient; each embedded chunk is
                  upserted as its sub-batch completes
  5. completed  — counts and timings recorded; search cache invalidated

Failure handling:
  - Every exception is caught at this boundary, the partial chunk set is
    deleted, "failed" is recorded with error metadata, and a structured
    IngestionResult(success=False) is returned. Nothing propagates.
  - Cancellation is the exception: CancelledError is re-raised untouched,
    no further status is written, and the next run clears partial chunks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from edurag.core.exceptions import (
    EduRagError,
    InvalidStatusTransition,
    NoExtractableText,
    NoValidChunks,
)
from edurag.processing.chunking import ChunkCandidate, ChunkingEngine
from edurag.processing.embeddings import EmbeddingClient
from edurag.processing.extractor import TextExtractor
from edurag.processing.language import Language, LanguageDetector
from edurag.schemas.documents import (
    ChunkingConfig,
    IngestionRequest,
    IngestionResult,
    LanguageDetectionResult,
    ProcessingStatus,
)
from edurag.services.cache import SearchCache
from edurag.vectorstore.base import ChunkRecord, ChunkStoreBase, StatusSink

logger = logging.getLogger(__name__)

# Statuses in which chunks may already have been written for this run
_CHUNK_WRITING_STATES = frozenset({
    ProcessingStatus.EXTRACTING,
    ProcessingStatus.CHUNKING,
    ProcessingStatus.EMBEDDING,
})


@dataclass
class _Run:
    """Mutable bookkeeping for one processing attempt."""
    document_id: str
    status:      ProcessingStatus = ProcessingStatus.UPLOADING
    started:     float            = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class ProcessingOrchestrator:
    """
    Usage:
        orchestrator = ProcessingOrchestrator(
            extractor=TextExtractor(),
            detector=LanguageDetector(),
            chunker=ChunkingEngine(),
            embedder=EmbeddingClient.from_settings(settings),
            chunk_store=get_chunk_store(),
            status_sink=get_status_store(),
        )
        result = await orchestrator.process(request)

    One run per document at a time; different documents may run concurrently
    on the same instance.
    """

    def __init__(
        self,
        extractor:        TextExtractor,
        detector:         LanguageDetector,
        chunker:          ChunkingEngine,
        embedder:         EmbeddingClient,
        chunk_store:      ChunkStoreBase,
        status_sink:      StatusSink,
        cache:            SearchCache | None    = None,
        default_config:   ChunkingConfig | None = None,
        default_language: Language              = Language.ENGLISH,
    ) -> None:
        self._extractor        = extractor
        self._detector         = detector
        self._chunker          = chunker
        self._embedder         = embedder
        self._store            = chunk_store
        self._status           = status_sink
        self._cache            = cache
        self._default_config   = default_config
        self._default_language = default_language

    @property
    def embedder(self) -> EmbeddingClient:
        return self._embedder

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def process(self, request: IngestionRequest) -> IngestionResult:
        run = _Run(document_id=request.document_id)
        logger.info(
            "Processing | doc=%s user=%s activity=%s",
            request.document_id, request.user_id, request.activity_id or "-",
        )

        try:
            return await self._run(run, request)
        except asyncio.CancelledError:
            logger.warning(
                "Processing cancelled | doc=%s status=%s elapsed_ms=%.0f",
                run.document_id, run.status.value, run.elapsed_ms,
            )
            raise
        except Exception as exc:
            return await self._fail(run, exc)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, run: _Run, request: IngestionRequest) -> IngestionResult:
        config = ChunkingConfig.resolve(request.chunking_config, base=self._default_config)
        explicit = Language.from_code(request.language) if request.language else None

        # --- Phase 1: extraction ------------------------------------------
        await self._transition(run, ProcessingStatus.EXTRACTING, {
            "startedAt":   datetime.now(timezone.utc).isoformat(),
            "userId":      request.user_id,
            "activityId":  request.activity_id,
            "fileUrl":     request.file_url,
            "contentType": request.content_type,
        })
        stale = await self._store.delete_by_document(run.document_id)
        if stale:
            logger.info("Cleared chunks from earlier run | doc=%s count=%d", run.document_id, stale)
            if self._cache is not None:
                self._cache.invalidate()

        extraction = await self._extractor.extract(request.file_url, request.content_type)
        text = extraction.text
        if not text.strip():
            raise NoExtractableText()

        # --- Phase 2: language ----------------------------------------------
        language, detection = self._resolve_language(request, explicit, text)

        # --- Phase 3: chunking ----------------------------------------------
        await self._transition(run, ProcessingStatus.CHUNKING, {
            "language":          language.code,
            "languageDetection": _dump(detection),
            "extractionMethod":  extraction.method,
            "textLength":        len(text),
        })
        chunks = self._chunker.chunk(text, config, language)
        if not chunks:
            raise NoValidChunks()

        # --- Phase 4: embedding + persistence -------------------------------
        await self._transition(run, ProcessingStatus.EMBEDDING, {"chunkCount": len(chunks)})
        created = await self._embed_and_persist(run, request, chunks)

        # --- Phase 5: completion --------------------------------------------
        await self._transition(run, ProcessingStatus.COMPLETED, {
            "chunksCreated":     created,
            "processingTimeMs":  run.elapsed_ms,
            "wordCount":         len(text.split()),
            "extractionMethod":  extraction.method,
            "language":          language.code,
            "languageDetection": _dump(detection),
        })
        if self._cache is not None:
            self._cache.invalidate()

        logger.info(
            "Processing done | doc=%s chunks=%d lang=%s elapsed_ms=%.0f",
            run.document_id, created, language.code, run.elapsed_ms,
        )
        return IngestionResult(
            success=True,
            document_id=run.document_id,
            chunks_created=created,
            processing_time_ms=run.elapsed_ms,
            language=language.code,
            language_detection=detection,
        )

    def _resolve_language(
        self,
        request:  IngestionRequest,
        explicit: Language | None,
        text:     str,
    ) -> tuple[Language, LanguageDetectionResult | None]:
        if explicit is not None:
            return explicit, LanguageDetector.manual(explicit)
        if request.enable_language_detection:
            detection = self._detector.detect(text)
            return Language.from_code(detection.detected_language), detection
        return self._default_language, None

    async def _embed_and_persist(
        self,
        run:     _Run,
        request: IngestionRequest,
        chunks:  list[ChunkCandidate],
    ) -> int:
        created = 0
        async for outcomes in self._embedder.iter_batches([c.content for c in chunks]):
            for outcome in outcomes:
                chunk = chunks[outcome.index]
                if not outcome.ok:
                    logger.error(
                        "Chunk embedding failed | doc=%s chunk=%d error=%s",
                        run.document_id, chunk.chunk_index, outcome.error,
                    )
                    raise outcome.error
                await self._store.upsert_chunk(ChunkRecord.from_candidate(
                    document_id=run.document_id,
                    candidate=chunk,
                    embedding=outcome.vector,
                    activity_id=request.activity_id,
                ))
                created += 1
        return created

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def _transition(
        self,
        run:      _Run,
        target:   ProcessingStatus,
        metadata: dict[str, Any],
    ) -> None:
        if not run.status.can_transition_to(target):
            raise InvalidStatusTransition(run.status.value, target.value)

        await self._status.record(run.document_id, target, metadata)
        logger.info(
            "Status | doc=%s %s → %s",
            run.document_id, run.status.value, target.value,
        )
        run.status = target

    async def _fail(self, run: _Run, exc: Exception) -> IngestionResult:
        if isinstance(exc, EduRagError):
            error = exc.to_metadata()
            logger.warning(
                "Processing failed | doc=%s stage=%s code=%s error=%s",
                run.document_id, run.status.value, exc.code, exc.message,
            )
        else:
            logger.exception(
                "Processing failed unexpectedly | doc=%s stage=%s",
                run.document_id, run.status.value,
            )
            error = {
                "error":       "Unexpected processing error",
                "errorCode":   "INTERNAL_ERROR",
                "retryable":   False,
                "errorDetail": f"{type(exc).__name__}: {exc}",
            }

        failed_stage = run.status
        if failed_stage in _CHUNK_WRITING_STATES:
            try:
                await self._store.delete_by_document(run.document_id)
            except Exception:
                logger.exception("Partial chunk cleanup failed | doc=%s", run.document_id)

        if not failed_stage.is_terminal:
            try:
                await self._transition(run, ProcessingStatus.FAILED, {
                    **error,
                    "failedStage":      failed_stage.value,
                    "processingTimeMs": run.elapsed_ms,
                })
            except Exception:
                logger.exception("Could not record failed status | doc=%s", run.document_id)

        return IngestionResult(
            success=False,
            document_id=run.document_id,
            processing_time_ms=run.elapsed_ms,
            error=error["error"],
            error_code=error["errorCode"],
            retryable=error["retryable"],
        )


def _dump(detection: LanguageDetectionResult | None) -> dict | None:
    return detection.model_dump(mode="json", by_alias=True) if detection else None
