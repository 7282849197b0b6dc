"""
Composed FastAPI Dependencies

Route handlers import from here; the concrete objects are built once in
main.lifespan and kept on app.state. Tests replace them through
app.dependency_overrides.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from edurag.services.processing import ProcessingOrchestrator
from edurag.services.search import SearchOrchestrator
from edurag.vectorstore.base import StatusStore
from edurag.workers.tasks import TaskPublisher


def get_processing_orchestrator(request: Request) -> ProcessingOrchestrator:
    return request.app.state.processing


def get_search_orchestrator(request: Request) -> SearchOrchestrator:
    return request.app.state.search


def get_status_store(request: Request) -> StatusStore:
    return request.app.state.status_store


def get_task_publisher() -> TaskPublisher:
    return TaskPublisher()


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Processing = Annotated[ProcessingOrchestrator, Depends(get_processing_orchestrator)]
Search     = Annotated[SearchOrchestrator,     Depends(get_search_orchestrator)]
Statuses   = Annotated[StatusStore,            Depends(get_status_store)]
Publisher  = Annotated[TaskPublisher,          Depends(get_task_publisher)]
