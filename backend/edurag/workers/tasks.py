"""
Celery Tasks — Document Processing

Task: process_document
  Runs ProcessingOrchestrator.process() for one IngestionRequest. The
  orchestrator records every status transition itself and never raises;
  the task only decides whether a failed run is worth another attempt.

Retries:
  A result with success=False and retryable=True (fetch transport errors,
  exhausted embedding retries, persistence errors) is re-queued with
  exponential countdown (30s, 60s, 120s) up to max_retries. Each attempt is
  a fresh run: stale chunks are cleared and the status machine restarts.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any

from celery import Task

from edurag.db.session import dispose_engine
from edurag.schemas.documents import IngestionRequest
from edurag.services.factory import build_processing_orchestrator
from edurag.workers.celery_app import PROCESS_DOCUMENT_TASK, celery_app

logger = logging.getLogger(__name__)

RETRY_BASE_COUNTDOWN = 30


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name=PROCESS_DOCUMENT_TASK,
    bind=True,
    max_retries=3,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=270,
    time_limit=330,
)
def process_document(self: Task, **payload: Any) -> dict[str, Any]:
    """Process one document; payload is an IngestionRequest as JSON."""
    request = IngestionRequest.model_validate(payload)
    result = run_async(_process_document_async(request))

    if not result.success and result.retryable and self.request.retries < self.max_retries:
        countdown = RETRY_BASE_COUNTDOWN * (2 ** self.request.retries)
        logger.warning(
            "Retrying document | doc=%s code=%s attempt=%d countdown=%ds",
            request.document_id, result.error_code, self.request.retries + 1, countdown,
        )
        raise self.retry(countdown=countdown)

    return result.model_dump(mode="json", by_alias=True)


async def _process_document_async(request: IngestionRequest):
    orchestrator = build_processing_orchestrator()
    try:
        return await orchestrator.process(request)
    finally:
        # The engine's connections belong to this task's event loop
        await orchestrator.embedder.aclose()
        await dispose_engine()


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

class TaskPublisher:
    """
    Sends the document processing task to the Celery broker.
    apply_async blocks on the broker connection, so it runs in a thread.
    """

    async def publish(self, request: IngestionRequest) -> str:
        loop = asyncio.get_running_loop()
        async_result = await loop.run_in_executor(
            None,
            lambda: process_document.apply_async(
                kwargs=request.model_dump(mode="json", exclude_none=True),
            ),
        )
        logger.info(
            "Processing task published | doc=%s task_id=%s",
            request.document_id, async_result.id,
        )
        return async_result.id
