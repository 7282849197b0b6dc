"""
Integration Tests — HTTP surface
═════════════════════════════════
These tests exercise the FULL FastAPI routing stack, including:
  - Dependency injection chain (orchestrators and stores overridden)
  - Request validation and structured ErrorResponse bodies
  - camelCase wire format
  - Inline processing, queued processing, status polling, search

What is mocked vs real
──────────────────────
  ✅ Real: FastAPI routing, Pydantic validation, ProcessingOrchestrator,
           SearchOrchestrator, in-memory stores, chunking, detection
  🔲 Mock: OpenAI SDK        (fake_openai fixture)
  🔲 Mock: file server       (httpx.MockTransport)
  🔲 Mock: Celery broker     (mock_publisher fixture)

How to run
──────────
  pytest -m integration backend/tests/integration/test_api.py -v
"""

from __future__ import annotations

import pytest

PROCESS_URL = "/api/v1/documents/process"
SEARCH_URL  = "/api/v1/search"


def _process_body(file_name: str = "lesson.txt", **extra) -> dict:
    body = {
        "documentId": "doc-1",
        "fileUrl":    f"https://files.test/{file_name}",
        "userId":     "user-1",
        "activityId": "act-1",
    }
    body.update(extra)
    return body


# ─────────────────────────────────────────────────────────────────────────────
# Processing
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestProcessEndpoints:

    async def test_inline_success(self, async_client):
        response = await async_client.post(PROCESS_URL, json=_process_body())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["documentId"] == "doc-1"
        assert body["chunksCreated"] > 0
        assert body["language"] == "en"
        assert "X-Request-ID" in response.headers

    async def test_inline_failure_is_422_with_result(self, async_client):
        response = await async_client.post(PROCESS_URL, json=_process_body("blank.txt"))

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["errorCode"] == "NO_EXTRACTABLE_TEXT"
        assert body["retryable"] is False

    async def test_missing_fields_rejected(self, async_client):
        response = await async_client.post(PROCESS_URL, json={"documentId": "doc-1"})

        assert response.status_code == 422
        body = response.json()
        assert body["error_code"] == "VALIDATION_ERROR"
        assert body["details"]

    async def test_async_processing_is_queued(self, async_client, mock_publisher):
        response = await async_client.post(f"{PROCESS_URL}/async", json=_process_body())

        assert response.status_code == 202
        assert response.json() == {"documentId": "doc-1", "taskId": "task-123", "status": "uploading"}

        request = mock_publisher.publish.await_args.args[0]
        assert request.file_url == "https://files.test/lesson.txt"

    async def test_status_after_processing(self, async_client):
        await async_client.post(PROCESS_URL, json=_process_body())

        response = await async_client.get("/api/v1/documents/doc-1/status")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["documentId"] == "doc-1"
        assert body["metadata"]["chunksCreated"] > 0

    async def test_status_of_failed_run(self, async_client):
        await async_client.post(PROCESS_URL, json=_process_body("missing.txt"))

        body = (await async_client.get("/api/v1/documents/doc-1/status")).json()

        assert body["status"] == "failed"
        assert body["metadata"]["errorCode"] == "DOCUMENT_FETCH_ERROR"

    async def test_status_unknown_document(self, async_client):
        response = await async_client.get("/api/v1/documents/nope/status")

        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "DOCUMENT_NOT_FOUND"


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestSearchEndpoint:

    async def test_search_after_processing(self, async_client):
        await async_client.post(PROCESS_URL, json=_process_body())

        response = await async_client.post(SEARCH_URL, json={
            "query": "photosynthesis chlorophyll",
            "scopeFilter": {"activityId": "act-1"},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["searchType"] in {"vector", "vector_low_threshold", "keyword_fallback"}
        assert 1 <= len(body["relevantChunks"]) <= 3
        assert body["relevantChunks"][0]["score"]["kind"] in {"similarity", "relevance"}

    async def test_search_without_content(self, async_client):
        response = await async_client.post(SEARCH_URL, json={
            "query": "photosynthesis",
            "scopeFilter": {"activityId": "act-1"},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["searchType"] == "no_indexed_content"

    async def test_short_query_is_400(self, async_client, fake_openai):
        response = await async_client.post(SEARCH_URL, json={
            "query": "hi",
            "scopeFilter": {"activityId": "act-1"},
        })

        assert response.status_code == 400
        assert response.json()["error_code"] == "QUERY_TOO_SHORT"
        fake_openai.embeddings.create.assert_not_awaited()

    async def test_scope_required(self, async_client):
        response = await async_client.post(SEARCH_URL, json={"query": "photosynthesis", "scopeFilter": {}})

        assert response.status_code == 422


# ─────────────────────────────────────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestOperations:

    async def test_health(self, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "edurag-api"}

    async def test_ready_with_memory_backend(self, async_client):
        response = await async_client.get("/ready")

        assert response.status_code == 200
        assert response.json()["database"]["status"] == "skipped"
