"""
Search — Pydantic Request/Response Schemas

Scores are a tagged union so the two ranking scales never mix:

    SimilarityScore  kind="similarity"  cosine similarity in [0, 1]   (vector paths)
    RelevanceScore   kind="relevance"   keyword occurrence count ≥ 1  (keyword path)
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import Field, model_validator

from edurag.schemas.documents import CamelModel


class SearchType(str, Enum):
    """Which path produced a SearchResponse. Exactly one per response."""
    VECTOR               = "vector"
    VECTOR_LOW_THRESHOLD = "vector_low_threshold"
    KEYWORD_FALLBACK     = "keyword_fallback"
    NO_INDEXED_CONTENT   = "no_indexed_content"


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

class SimilarityScore(CamelModel):
    kind:  Literal["similarity"] = "similarity"
    value: float


class RelevanceScore(CamelModel):
    kind:  Literal["relevance"] = "relevance"
    value: int = Field(..., ge=1)


SearchScore = Annotated[Union[SimilarityScore, RelevanceScore], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Request / response
# ---------------------------------------------------------------------------

class SearchScope(CamelModel):
    """Restricts a search to an activity, an explicit document set, or both."""
    activity_id:  str | None       = None
    document_ids: list[str] | None = None

    @model_validator(mode="after")
    def _require_filter(self) -> "SearchScope":
        if not self.activity_id and not self.document_ids:
            raise ValueError("scope_filter needs an activity_id or document_ids")
        return self

    def cache_key(self) -> tuple:
        return (self.activity_id, tuple(sorted(self.document_ids or ())))


class SearchRequest(CamelModel):
    query:                str
    scope_filter:         SearchScope
    max_results:          int | None   = Field(None, ge=1, le=50)
    similarity_threshold: float | None = Field(None, ge=0.0, le=1.0)


class SearchResult(CamelModel):
    chunk_id:    str
    document_id: str
    chunk_index: int
    text:        str
    score:       SearchScore


class SearchResponse(CamelModel):
    success:         bool
    search_type:     SearchType
    relevant_chunks: list[SearchResult] = Field(default_factory=list)
    message:         str | None         = None
