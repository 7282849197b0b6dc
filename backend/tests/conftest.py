"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : status_store, chunk_store, cache, fake_openai, embedder,
                    file_server, http_client, make_orchestrator, app_with_overrides

Environment strategy:
  - CHUNK_STORE_BACKEND=memory, so nothing needs PostgreSQL.
  - The OpenAI SDK is replaced by a fake whose embeddings.create returns
    keyword-count vectors (see topic_vector), so similarity is predictable.
  - Files are served by an httpx.MockTransport; no network.
  - Celery uses the in-memory broker; tasks are called directly.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # HTTP surface + worker wiring
  pytest backend/tests/unit/test_chunking.py
"""

from __future__ import annotations

import os
from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("CHUNK_STORE_BACKEND",           "memory")
os.environ.setdefault("OPENAI_API_KEY",                "sk-test-key")
os.environ.setdefault("EMBEDDING_BATCH_DELAY_SECONDS", "0")
os.environ.setdefault("CELERY_BROKER_URL",             "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND",         "cache+memory://")
os.environ.setdefault("APP_ENV",                       "development")
os.environ.setdefault("DEBUG",                         "true")


# ─────────────────────────────────────────────────────────────────────────────
# Deterministic embeddings
# ─────────────────────────────────────────────────────────────────────────────

DIMS = 8

# One axis per topic word; the last axis is a small constant so no vector is zero
TOPIC_WORDS = ("photosynthesis", "chlorophyll", "energy", "water", "war", "empire", "fraction")


def topic_vector(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(word)) for word in TOPIC_WORDS] + [0.05]


@pytest.fixture
def vectorize():
    """The embedding function used by fake_openai, for seeding stores directly."""
    return topic_vector


@pytest.fixture
def fake_openai():
    """
    Stand-in for AsyncOpenAI: only embeddings.create is used.
    Override `fake_openai.embeddings.create.side_effect` per test.
    """
    async def _create(model, input, encoding_format="float", **_):
        return SimpleNamespace(data=[SimpleNamespace(embedding=topic_vector(input))])

    client = MagicMock()
    client.embeddings.create = AsyncMock(side_effect=_create)
    client.close = AsyncMock(return_value=None)
    return client


@pytest.fixture
def no_sleep():
    return AsyncMock(return_value=None)


@pytest.fixture
def embedder(fake_openai, no_sleep):
    from edurag.core.retry import RetryPolicy
    from edurag.processing.embeddings import EmbeddingClient

    return EmbeddingClient(
        fake_openai,
        dimensions=DIMS,
        batch_size=5,
        batch_delay=0,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=2.0, multiplier=2.0),
        sleep=no_sleep,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Stores and cache
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def status_store():
    from edurag.vectorstore.memory_store import InMemoryStatusStore
    return InMemoryStatusStore()


@pytest.fixture
def chunk_store(status_store):
    from edurag.vectorstore.memory_store import InMemoryChunkStore
    return InMemoryChunkStore(status_store=status_store)


@pytest.fixture
def cache():
    from edurag.services.cache import SearchCache
    return SearchCache(maxsize=10, ttl=60)


# ─────────────────────────────────────────────────────────────────────────────
# Sample documents
# ─────────────────────────────────────────────────────────────────────────────

LESSON_TEXT = (
    "Photosynthesis is how plants turn light into chemical energy. "
    "It takes place inside the chloroplasts of leaf cells. "
    "Chlorophyll absorbs mostly red and blue light from the sun.\n\n"
    "Plants take in water through their roots and carbon dioxide through their leaves. "
    "The energy stored in glucose feeds the rest of the plant. "
    "Oxygen is released into the air as a by-product of the reaction.\n\n"
    "Without photosynthesis there would be very little oxygen for animals to breathe. "
    "Almost every food chain on land begins with this process in green plants."
)

KOREAN_TEXT = (
    "광합성은 식물이 빛을 화학 에너지로 바꾸는 과정입니다. "
    "엽록소는 주로 빨간빛과 파란빛을 흡수합니다. "
    "식물은 뿌리로 물을 흡수하고 잎으로 이산화탄소를 받아들입니다."
)


@pytest.fixture
def lesson_text() -> str:
    return LESSON_TEXT


@pytest.fixture
def korean_text() -> str:
    return KOREAN_TEXT


# ─────────────────────────────────────────────────────────────────────────────
# File server (httpx.MockTransport)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def files() -> dict[str, tuple[int, str, bytes]]:
    """url → (status, content-type, body). Tests add entries as needed."""
    return {
        "https://files.test/lesson.txt": (200, "text/plain; charset=utf-8", LESSON_TEXT.encode()),
        "https://files.test/korean.txt": (200, "text/plain; charset=utf-8", KOREAN_TEXT.encode()),
        "https://files.test/blank.txt":  (200, "text/plain", b"   \n\n  "),
    }


@pytest_asyncio.fixture
async def http_client(files) -> AsyncGenerator[httpx.AsyncClient, None]:
    def _handler(request: httpx.Request) -> httpx.Response:
        entry = files.get(str(request.url))
        if entry is None:
            return httpx.Response(404, request=request)
        status_code, content_type, body = entry
        return httpx.Response(status_code, headers={"content-type": content_type}, content=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
        yield client


# ─────────────────────────────────────────────────────────────────────────────
# Orchestrators
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_orchestrator(http_client, embedder, chunk_store, status_store, cache):
    """Factory: ProcessingOrchestrator over the in-memory stores and fake provider."""
    from edurag.processing.chunking import ChunkingEngine
    from edurag.processing.extractor import TextExtractor
    from edurag.processing.language import LanguageDetector
    from edurag.schemas.documents import ChunkingConfig
    from edurag.services.processing import ProcessingOrchestrator

    def _build(**overrides):
        params = dict(
            extractor=TextExtractor(http_client=http_client),
            detector=LanguageDetector(),
            chunker=ChunkingEngine(),
            embedder=embedder,
            chunk_store=chunk_store,
            status_sink=status_store,
            cache=cache,
            default_config=ChunkingConfig(max_chunk_size=200, min_chunk_size=40, chunk_overlap=30),
        )
        params.update(overrides)
        return ProcessingOrchestrator(**params)

    return _build


@pytest.fixture
def search_orchestrator(embedder, chunk_store, cache):
    from edurag.services.search import SearchOrchestrator
    return SearchOrchestrator(embedder, chunk_store, cache=cache)


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI test client with dependency overrides
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_publisher():
    """Mocked TaskPublisher — records calls without touching Celery/broker."""
    from edurag.workers.tasks import TaskPublisher
    publisher = MagicMock(spec=TaskPublisher)
    publisher.publish = AsyncMock(return_value="task-123")
    return publisher


@pytest.fixture
def app_with_overrides(make_orchestrator, search_orchestrator, status_store, mock_publisher):
    """
    FastAPI app with every service dependency overridden:
      - processing / search orchestrators over in-memory stores
      - status store shared with the processing orchestrator
      - task publisher mocked (no broker)
    """
    from edurag.api.dependencies import (
        get_processing_orchestrator,
        get_search_orchestrator,
        get_status_store,
        get_task_publisher,
    )
    from edurag.main import app

    processing = make_orchestrator()
    app.dependency_overrides[get_processing_orchestrator] = lambda: processing
    app.dependency_overrides[get_search_orchestrator]     = lambda: search_orchestrator
    app.dependency_overrides[get_status_store]            = lambda: status_store
    app.dependency_overrides[get_task_publisher]          = lambda: mock_publisher

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app_with_overrides) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP test client using the overridden app (lifespan not run)."""
    transport = httpx.ASGITransport(app=app_with_overrides)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
