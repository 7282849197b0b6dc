"""
Search Orchestrator — Vector → Relaxed Vector → Keyword Fallback

  ┌─────────────────────────────────────────────────────────────┐
  │  SearchRequest (query, scope)                               │
  │       │                                                     │
  │       ▼                                                     │
  │  [0] Validate query length   (QueryTooShort, no I/O)        │
  │       │                                                     │
  │       ▼                                                     │
  │  [1] SearchCache lookup ───────────────────────▶ cached     │
  │       │                                                     │
  │       ▼                                                     │
  │  [2] Scope empty? ─────────────────────▶ no_indexed_content │
  │       │                                                     │
  │       ▼                                                     │
  │  [3] Embed query + vector search @ 0.7 ──────▶ vector       │
  │       │ zero results                                        │
  │       ▼                                                     │
  │  [4] Vector search @ 0.5 ──────────▶ vector_low_threshold   │
  │       │ zero results, or any error in [3]/[4]               │
  │       ▼                                                     │
  │  [5] Keyword scan over every chunk in scope ─▶ keyword_fallback
  └─────────────────────────────────────────────────────────────┘

Only QueryTooShort escapes search(). Every other failure degrades to the next
path, and a failing keyword path yields SearchResponse(success=False).

Keyword scoring:
  query  → lowercase, whitespace tokens
  chunk  → sum over tokens of case-insensitive substring occurrences
  zero scores dropped, sorted by score desc (ties keep chunk order), capped
"""

from __future__ import annotations

import logging
import time

from edurag.core.exceptions import QueryTooShort
from edurag.processing.embeddings import EmbeddingClient
from edurag.schemas.search import (
    RelevanceScore,
    SearchRequest,
    SearchResponse,
    SearchResult,
    SearchScope,
    SearchType,
    SimilarityScore,
)
from edurag.services.cache import SearchCache
from edurag.vectorstore.base import ChunkStoreBase, SimilarChunk, StoredChunk

logger = logging.getLogger(__name__)

NO_INDEXED_CONTENT_MESSAGE = "No indexed content for this scope"
SEARCH_FAILED_MESSAGE      = "Search is temporarily unavailable"


class SearchOrchestrator:
    """
    Usage:
        orchestrator = SearchOrchestrator(embedder, chunk_store, cache=cache)
        response = await orchestrator.search(SearchRequest(...))
    """

    def __init__(
        self,
        embedder:             EmbeddingClient,
        chunk_store:          ChunkStoreBase,
        cache:                SearchCache | None = None,
        min_query_length:     int   = 3,
        similarity_threshold: float = 0.7,
        relaxed_threshold:    float = 0.5,
        max_results:          int   = 3,
    ) -> None:
        self._embedder             = embedder
        self._store                = chunk_store
        self._cache                = cache
        self._min_query_length     = min_query_length
        self._similarity_threshold = similarity_threshold
        self._relaxed_threshold    = relaxed_threshold
        self._max_results          = max_results

    @property
    def embedder(self) -> EmbeddingClient:
        return self._embedder

    @classmethod
    def from_settings(
        cls,
        settings,
        embedder:    EmbeddingClient,
        chunk_store: ChunkStoreBase,
        cache:       SearchCache | None = None,
    ) -> "SearchOrchestrator":
        return cls(
            embedder=embedder,
            chunk_store=chunk_store,
            cache=cache,
            min_query_length=settings.search_min_query_length,
            similarity_threshold=settings.search_similarity_threshold,
            relaxed_threshold=settings.search_relaxed_threshold,
            max_results=settings.search_max_results,
        )

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    async def search(self, request: SearchRequest) -> SearchResponse:
        """
        Raises:
            QueryTooShort: the stripped query is shorter than the minimum.
        """
        query = request.query.strip()
        if len(query) < self._min_query_length:
            raise QueryTooShort(self._min_query_length)

        scope     = request.scope_filter
        limit     = request.max_results or self._max_results
        threshold = (
            request.similarity_threshold
            if request.similarity_threshold is not None
            else self._similarity_threshold
        )

        cache_key = SearchCache.key(query, scope.cache_key(), limit, threshold)
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Search cache hit | query=%r", query[:60])
                return cached

        t0 = time.monotonic()
        response, cacheable = await self._search(query, scope, limit, threshold)

        logger.info(
            "Search | type=%s results=%d elapsed_ms=%.0f activity=%s docs=%d",
            response.search_type.value,
            len(response.relevant_chunks),
            (time.monotonic() - t0) * 1000,
            scope.activity_id or "-",
            len(scope.document_ids or ()),
        )
        if cacheable and self._cache is not None:
            self._cache.put(cache_key, response)
        return response

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    async def _search(
        self,
        query:     str,
        scope:     SearchScope,
        limit:     int,
        threshold: float,
    ) -> tuple[SearchResponse, bool]:
        """Returns the response and whether it may be cached."""
        try:
            indexed = await self._store.count_chunks(scope)
        except Exception as exc:
            logger.warning("Chunk count failed, trying keyword path | %s: %s", type(exc).__name__, exc)
        else:
            if indexed == 0:
                return SearchResponse(
                    success=False,
                    search_type=SearchType.NO_INDEXED_CONTENT,
                    message=NO_INDEXED_CONTENT_MESSAGE,
                ), False

        degraded = False
        try:
            vector = await self._embedder.embed(query)

            matches = await self._store.query_similar(vector, scope, threshold, limit)
            if matches:
                return _vector_response(SearchType.VECTOR, matches), True

            if self._relaxed_threshold < threshold:
                matches = await self._store.query_similar(vector, scope, self._relaxed_threshold, limit)
                if matches:
                    logger.info(
                        "Vector search relaxed | threshold=%.2f→%.2f results=%d",
                        threshold, self._relaxed_threshold, len(matches),
                    )
                    return _vector_response(SearchType.VECTOR_LOW_THRESHOLD, matches), True
        except Exception as exc:
            degraded = True
            logger.warning("Vector search failed, using keyword fallback | %s: %s", type(exc).__name__, exc)

        try:
            chunks = await self._store.list_chunks(scope)
        except Exception as exc:
            logger.error("Keyword fallback failed | %s: %s", type(exc).__name__, exc)
            return SearchResponse(
                success=False,
                search_type=SearchType.KEYWORD_FALLBACK,
                message=SEARCH_FAILED_MESSAGE,
            ), False

        results = keyword_rank(query, chunks, limit)
        return SearchResponse(
            success=True,
            search_type=SearchType.KEYWORD_FALLBACK,
            relevant_chunks=results,
        ), not degraded


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _vector_response(search_type: SearchType, matches: list[SimilarChunk]) -> SearchResponse:
    return SearchResponse(
        success=True,
        search_type=search_type,
        relevant_chunks=[
            SearchResult(
                chunk_id=m.id,
                document_id=m.document_id,
                chunk_index=m.chunk_index,
                text=m.content,
                score=SimilarityScore(value=m.similarity),
            )
            for m in matches
        ],
    )


def keyword_score(tokens: list[str], text: str) -> int:
    haystack = text.lower()
    return sum(haystack.count(token) for token in tokens)


def keyword_rank(query: str, chunks: list[StoredChunk], limit: int) -> list[SearchResult]:
    tokens = query.lower().split()
    scored = [(keyword_score(tokens, chunk.content), chunk) for chunk in chunks]
    # sorted() is stable: equal scores keep store order (document, chunk index)
    ranked = sorted(
        ((score, chunk) for score, chunk in scored if score > 0),
        key=lambda pair: pair[0],
        reverse=True,
    )
    return [
        SearchResult(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
            text=chunk.content,
            score=RelevanceScore(value=score),
        )
        for score, chunk in ranked[:limit]
    ]
