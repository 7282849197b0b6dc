"""
Search API

POST /api/v1/search → SearchResponse

A query shorter than the configured minimum is rejected with 400 before any
embedding or database call. Every other failure degrades inside the
SearchOrchestrator (relaxed threshold, keyword fallback) and is reported in
the response body rather than as an HTTP error.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from edurag.api.dependencies import Search
from edurag.schemas.documents import ErrorResponse
from edurag.schemas.search import SearchRequest, SearchResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["Search"])


@router.post(
    "",
    response_model=SearchResponse,
    summary="Search the chunks of an activity or document set",
    responses={
        200: {"model": SearchResponse},
        400: {"model": ErrorResponse, "description": "Query too short"},
    },
)
async def search(body: SearchRequest, orchestrator: Search) -> SearchResponse:
    return await orchestrator.search(body)
