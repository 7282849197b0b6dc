"""
Search result cache.

A bounded TTL cache of SearchResponse objects keyed by the normalised query,
the search scope and the effective limits. One instance is created per
application and handed to both orchestrators: search reads and fills it,
processing clears it whenever a document reaches "completed".
"""

from __future__ import annotations

import logging
from typing import Hashable

from cachetools import TTLCache

from edurag.schemas.search import SearchResponse

logger = logging.getLogger(__name__)


class SearchCache:

    def __init__(self, maxsize: int = 100, ttl: float = 300) -> None:
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._hits   = 0
        self._misses = 0

    @classmethod
    def from_settings(cls, settings) -> "SearchCache":
        return cls(
            maxsize=settings.search_cache_max_entries,
            ttl=settings.search_cache_ttl_seconds,
        )

    @staticmethod
    def key(query: str, scope_key: tuple, max_results: int, threshold: float) -> tuple:
        return (" ".join(query.lower().split()), scope_key, max_results, threshold)

    def get(self, key: Hashable) -> SearchResponse | None:
        response = self._cache.get(key)
        if response is None:
            self._misses += 1
            return None
        self._hits += 1
        return response.model_copy(deep=True)

    def put(self, key: Hashable, response: SearchResponse) -> None:
        self._cache[key] = response.model_copy(deep=True)

    def invalidate(self) -> None:
        """Drop every entry; called when the set of searchable chunks changes."""
        if self._cache:
            logger.debug("Search cache invalidated | entries=%d", len(self._cache))
        self._cache.clear()

    def clear(self) -> None:
        self._cache.clear()
        self._hits = self._misses = 0

    def stats(self) -> dict:
        return {
            "entries": len(self._cache),
            "maxsize": self._cache.maxsize,
            "ttl":     self._cache.ttl,
            "hits":    self._hits,
            "misses":  self._misses,
        }

    def __len__(self) -> int:
        return len(self._cache)
