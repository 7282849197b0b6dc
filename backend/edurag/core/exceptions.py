"""
Domain exceptions for the processing and search pipelines.

Every error carries:
  code       — stable machine-readable code, surfaced in ErrorResponse bodies
               and in failed-status metadata
  retryable  — whether re-running the same operation could succeed

Hierarchy:

  EduRagError
  ├── ValidationError              (never retryable)
  │   ├── QueryTooShort
  │   ├── InvalidChunkingConfig
  │   └── UnsupportedLanguage
  ├── ExtractionError
  │   ├── NoExtractableText
  │   ├── DocumentParseError
  │   └── DocumentFetchError       (retryable: transport failure)
  ├── ChunkingError
  │   └── NoValidChunks
  ├── EmbeddingFailed              (retryable unless the provider rejected the request)
  ├── PersistenceError             (retryable: re-run ingestion)
  ├── SearchUnavailable            (handled by keyword fallback)
  └── InvalidStatusTransition      (programming error)
"""

from __future__ import annotations


class EduRagError(Exception):
    """Base exception for all application errors."""

    code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def to_metadata(self) -> dict:
        """Shape stored alongside a failed processing status."""
        data = {
            "error":     self.message,
            "errorCode": self.code,
            "retryable": self.retryable,
        }
        if self.detail:
            data["errorDetail"] = self.detail
        return data


# ── Validation ────────────────────────────────────────────

class ValidationError(EduRagError):
    code = "VALIDATION_ERROR"


class QueryTooShort(ValidationError):
    code = "QUERY_TOO_SHORT"

    def __init__(self, min_length: int):
        super().__init__(
            message=f"Query must be at least {min_length} characters long",
        )
        self.min_length = min_length


class InvalidChunkingConfig(ValidationError):
    code = "INVALID_CHUNKING_CONFIG"


class UnsupportedLanguage(ValidationError):
    code = "UNSUPPORTED_LANGUAGE"

    def __init__(self, language_code: str):
        super().__init__(message=f"Unsupported language code: {language_code!r}")
        self.language_code = language_code


# ── Extraction ────────────────────────────────────────────

class ExtractionError(EduRagError):
    code = "EXTRACTION_ERROR"


class NoExtractableText(ExtractionError):
    code = "NO_EXTRACTABLE_TEXT"

    def __init__(self, message: str = "No text could be extracted from the document"):
        super().__init__(message=message)


class DocumentParseError(ExtractionError):
    code = "DOCUMENT_PARSE_ERROR"


class DocumentFetchError(ExtractionError):
    """Transport failure; client errors (other than 429) will not recover on retry."""

    code = "DOCUMENT_FETCH_ERROR"

    def __init__(self, message: str, detail: str | None = None, status_code: int | None = None):
        super().__init__(message=message, detail=detail)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


# ── Chunking ──────────────────────────────────────────────

class ChunkingError(EduRagError):
    code = "CHUNKING_ERROR"


class NoValidChunks(ChunkingError):
    code = "NO_VALID_CHUNKS"

    def __init__(self, message: str = "No chunks met the minimum size requirement"):
        super().__init__(message=message)


# ── Embedding ─────────────────────────────────────────────

class EmbeddingFailed(EduRagError):
    """Raised once the retry policy is exhausted, or on a non-transient provider error."""

    code = "EMBEDDING_FAILED"
    retryable = True

    def __init__(
        self,
        message:    str,
        last_error: BaseException | None = None,
        attempts:   int = 0,
        retryable:  bool = True,
    ):
        super().__init__(
            message=message,
            detail=f"{type(last_error).__name__}: {last_error}" if last_error else None,
        )
        self.last_error = last_error
        self.attempts = attempts
        self.retryable = retryable


# ── Persistence / search ──────────────────────────────────

class PersistenceError(EduRagError):
    code = "PERSISTENCE_ERROR"
    retryable = True


class SearchUnavailable(EduRagError):
    code = "SEARCH_UNAVAILABLE"
    retryable = True


class InvalidStatusTransition(EduRagError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, target: str):
        super().__init__(message=f"Cannot move processing status from {current!r} to {target!r}")
        self.current = current
        self.target = target
