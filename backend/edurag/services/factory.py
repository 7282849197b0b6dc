"""
Service wiring.

Builds the orchestrators from settings. The API builds one set at startup
(see main.lifespan) and keeps it on app.state; each Celery task builds its
own because every task runs in a fresh event loop.
"""

from __future__ import annotations

import httpx

from edurag.core.config import Settings, settings as default_settings
from edurag.processing.chunking import ChunkingEngine
from edurag.processing.embeddings import EmbeddingClient
from edurag.processing.extractor import TextExtractor
from edurag.processing.language import Language, LanguageDetector
from edurag.schemas.documents import ChunkingConfig
from edurag.services.cache import SearchCache
from edurag.services.processing import ProcessingOrchestrator
from edurag.services.search import SearchOrchestrator
from edurag.vectorstore.base import ChunkStoreBase, StatusSink
from edurag.vectorstore.factory import get_chunk_store, get_status_store


def build_processing_orchestrator(
    *,
    settings:    Settings | None            = None,
    embedder:    EmbeddingClient | None     = None,
    chunk_store: ChunkStoreBase | None      = None,
    status_sink: StatusSink | None          = None,
    cache:       SearchCache | None         = None,
    http_client: httpx.AsyncClient | None   = None,
) -> ProcessingOrchestrator:
    settings = settings or default_settings
    return ProcessingOrchestrator(
        extractor=TextExtractor.from_settings(settings, http_client=http_client),
        detector=LanguageDetector.from_settings(settings),
        chunker=ChunkingEngine(),
        embedder=embedder or EmbeddingClient.from_settings(settings),
        chunk_store=chunk_store or get_chunk_store(),
        status_sink=status_sink or get_status_store(),
        cache=cache,
        default_config=ChunkingConfig.defaults(),
        default_language=Language.from_code(settings.default_language),
    )


def build_search_orchestrator(
    *,
    settings:    Settings | None        = None,
    embedder:    EmbeddingClient | None = None,
    chunk_store: ChunkStoreBase | None  = None,
    cache:       SearchCache | None     = None,
) -> SearchOrchestrator:
    settings = settings or default_settings
    return SearchOrchestrator.from_settings(
        settings,
        embedder=embedder or EmbeddingClient.from_settings(settings),
        chunk_store=chunk_store or get_chunk_store(),
        cache=cache,
    )
