"""
Document Processing API Router

POST /api/v1/documents/process          run the pipeline inline
POST /api/v1/documents/process/async    queue the pipeline on the Celery worker
GET  /api/v1/documents/{id}/status      latest recorded processing status

Request lifecycle (inline):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. IngestionRequest validated by FastAPI (422 on shape) │
  │ 2. ProcessingOrchestrator.process() — never raises      │
  │ 3. success → 200 IngestionResult                        │
  │    failure → 422 IngestionResult (error, retryable)     │
  └─────────────────────────────────────────────────────────┘

Status is written by the orchestrator at every transition; clients of the
async endpoint poll the status route.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from edurag.api.dependencies import Processing, Publisher, Statuses
from edurag.schemas.documents import (
    ErrorResponse,
    IngestionRequest,
    IngestionResult,
    ProcessingAccepted,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Document Processing"],
)


@router.post(
    "/process",
    response_model=IngestionResult,
    summary="Process a document inline",
    description=(
        "Fetches the file, extracts text, detects the language, chunks, embeds and "
        "persists the chunks. Returns when the run reaches completed or failed."
    ),
    responses={
        200: {"model": IngestionResult, "description": "Document processed"},
        422: {"model": IngestionResult, "description": "Processing failed; see error and retryable"},
    },
)
async def process_document(body: IngestionRequest, orchestrator: Processing):
    result = await orchestrator.process(body)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=result.model_dump(mode="json", by_alias=True),
        )
    return result


@router.post(
    "/process/async",
    response_model=ProcessingAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a document for background processing",
    description="Returns 202 immediately. Poll GET /documents/{id}/status for progress.",
)
async def process_document_async(body: IngestionRequest, publisher: Publisher) -> ProcessingAccepted:
    task_id = await publisher.publish(body)
    return ProcessingAccepted(document_id=body.document_id, task_id=task_id)


@router.get(
    "/{document_id}/status",
    response_model=StatusUpdate,
    summary="Latest processing status",
    responses={
        200: {"model": StatusUpdate},
        404: {"model": ErrorResponse},
    },
)
async def get_document_status(document_id: str, statuses: Statuses) -> StatusUpdate:
    update = await statuses.latest(document_id)
    if update is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(
                error_code="DOCUMENT_NOT_FOUND",
                message=f"No processing status recorded for document {document_id}.",
            ).model_dump(),
        )
    return update
