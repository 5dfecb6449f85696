"""
Screen Pilot Agent - Main Application
=====================================

FastAPI application entry point.

This module sets up:
- FastAPI application with CORS
- Route registration
- Middleware (logging, error handling)
- Lifespan management (startup/shutdown)

Usage:
    # Development
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

    # Production
    uvicorn app.main:app --host 0.0.0.0 --port 8000
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.api.routes import device_router, health_router, tasks_router
from app.api.routes.tasks import _tasks
from app.config import get_settings
from app.utils.logger import get_logger, setup_logging

# Setup logging
settings = get_settings()
setup_logging(
    level=settings.server.log_level,
    json_logs=not settings.server.debug,
)

logger = get_logger(__name__)

# Seconds shutdown waits for running tasks to stop
SHUTDOWN_GRACE_SECONDS = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Cancels running tasks on shutdown so their capture sessions are torn down.
    """
    logger.info(
        "Starting Screen Pilot Agent",
        version=__version__,
        environment=settings.server.environment,
        llm_provider=settings.llm.llm_provider,
    )

    yield

    logger.info("Shutting down Screen Pilot Agent")
    runners = []
    for record in _tasks.values():
        if record.is_done:
            continue
        if record.loop is not None:
            record.loop.cancel("Server shutting down")
        if record.runner is not None:
            runners.append(record.runner)

    if runners:
        done, pending = await asyncio.wait(runners, timeout=SHUTDOWN_GRACE_SECONDS)
        for runner in pending:
            runner.cancel()
        logger.info("Running tasks stopped", stopped=len(done), forced=len(pending))


# Create FastAPI application
app = FastAPI(
    title="Screen Pilot Agent",
    description=(
        "Vision-language smartphone automation agent. "
        "Runs natural language tasks on an Android device via ADB."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.server.debug else None,
    redoc_url="/redoc" if settings.server.debug else None,
    openapi_url="/openapi.json" if settings.server.debug else None,
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with timing."""
    start_time = time.time()

    request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)

    logger.info(
        "Request started",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        client=request.client.host if request.client else "unknown",
    )

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000

    logger.info(
        "Request completed",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

    return response


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.server.debug else "An unexpected error occurred",
        },
    )


# Register routers
app.include_router(health_router)
app.include_router(tasks_router)
app.include_router(device_router)


# Root endpoint
@app.get("/", include_in_schema=False)
async def root() -> dict[str, Any]:
    """Root endpoint with service information."""
    return {
        "service": "Screen Pilot Agent",
        "version": __version__,
        "docs": "/docs" if settings.server.debug else None,
        "health": "/health",
        "tasks": "/tasks",
        "device": "/device",
    }


# Run directly (for development)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server.server_host,
        port=settings.server.server_port,
        reload=settings.server.debug,
        log_level=settings.server.log_level.lower(),
    )
