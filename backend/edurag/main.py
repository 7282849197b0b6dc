"""
FastAPI Application — Entry Point

EduRAG processing and search API

Architecture:
  - All routes are versioned under /api/v1/
  - One SearchCache, EmbeddingClient and store pair per process, built in
    lifespan and shared by both orchestrators through app.state
  - Structured ErrorResponse bodies on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS — restrict to configured origins
  2. Request ID injection — X-Request-ID header on every response
  3. Request logging — one log line per request with latency
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from edurag.api.v1.documents import router as documents_router
from edurag.api.v1.search import router as search_router
from edurag.core.config import settings
from edurag.core.exceptions import (
    EduRagError,
    PersistenceError,
    SearchUnavailable,
    ValidationError,
)
from edurag.db.session import check_db_health, dispose_engine
from edurag.processing.embeddings import EmbeddingClient
from edurag.schemas.documents import ErrorDetail, ErrorResponse
from edurag.services.cache import SearchCache
from edurag.services.factory import build_processing_orchestrator, build_search_orchestrator
from edurag.vectorstore.factory import get_chunk_store, get_status_store

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: validate DB connectivity, wire the shared services.
    Run on shutdown: close the embedding client and the connection pool.
    """
    logger.info(
        "Starting EduRAG | env=%s chunk_store=%s",
        settings.app_env, settings.chunk_store_backend,
    )

    if settings.chunk_store_backend == "postgres":
        db_health = await check_db_health()
        if db_health["status"] != "ok":
            logger.critical("Database health check failed at startup: %s", db_health)
            raise RuntimeError(f"DB unavailable: {db_health}")
        logger.info("Database: connected")

    cache        = SearchCache.from_settings(settings)
    embedder     = EmbeddingClient.from_settings(settings)
    chunk_store  = get_chunk_store()
    status_store = get_status_store()

    app.state.cache        = cache
    app.state.status_store = status_store
    app.state.processing   = build_processing_orchestrator(
        embedder=embedder,
        chunk_store=chunk_store,
        status_sink=status_store,
        cache=cache,
    )
    app.state.search = build_search_orchestrator(
        embedder=embedder,
        chunk_store=chunk_store,
        cache=cache,
    )

    yield

    logger.info("Shutting down EduRAG | cache=%s", cache.stats())
    await embedder.aclose()
    await dispose_engine()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def _status_for(exc: EduRagError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, (SearchUnavailable, PersistenceError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title="EduRAG",
        description=(
            "Document processing and retrieval for the education chat product: "
            "extraction, language detection, chunking, embeddings and fallback search."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(EduRagError)
    async def edurag_exception_handler(request: Request, exc: EduRagError):
        status_code = _status_for(exc)
        logger.warning(
            "Request rejected | path=%s code=%s status=%d",
            request.url.path, exc.code, status_code,
        )
        details = [ErrorDetail(message=exc.detail, code=exc.code)] if exc.detail else []
        body = ErrorResponse(
            error_code=exc.code,
            message=exc.message,
            details=details,
            request_id=request.headers.get("X-Request-ID"),
        )
        return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=request.headers.get("X-Request-ID"),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(search_router,    prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (used by the load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "edurag-api"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the configured chunk store is reachable.",
    )
    async def readiness() -> JSONResponse:
        if settings.chunk_store_backend != "postgres":
            return JSONResponse(
                status_code=status.HTTP_200_OK,
                content={"status": "ready", "database": {"status": "skipped"}},
            )
        db_status = await check_db_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "edurag.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )
