"""
FastAPI application for the Taleweaver turn engine
"""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from taleweaver.api.sessions import router as sessions_router
from taleweaver.api.sessions import sessions_db
from taleweaver.config import settings
from taleweaver.utils.logger import get_logger, setup_logging

setup_logging(level=settings.log_level, log_file=settings.log_file, include_timestamp=True)

logger = get_logger(__name__)

app = FastAPI(
    title="Taleweaver",
    description="Turn resolution engine for interactive narrative play",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next: Callable) -> Response:
    """Log each request with a short correlation id and its duration"""
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    route = f"{request.method} {request.url.path}"
    base_extra = {"component": "API", "request_id": request_id, "path": request.url.path}
    started = time.perf_counter()

    logger.debug(f"[API] -> {route}", extra=base_extra)
    try:
        response = await call_next(request)
    except Exception as e:
        elapsed = (time.perf_counter() - started) * 1000
        logger.error(
            f"[API] {route} raised {type(e).__name__} after {elapsed:.1f}ms",
            extra={**base_extra, "duration_ms": elapsed},
            exc_info=True,
        )
        raise

    elapsed = (time.perf_counter() - started) * 1000
    logger.info(
        f"[API] {route} -> {response.status_code} ({elapsed:.1f}ms)",
        extra={**base_extra, "status_code": response.status_code, "duration_ms": elapsed},
    )
    return response


app.include_router(sessions_router, prefix="/sessions", tags=["sessions"])


@app.on_event("startup")
async def startup_event():
    embeddings = settings.embedding_provider or settings.model_provider
    logger.info(
        f"[Startup] provider={settings.model_provider} model={settings.model_name} "
        f"embeddings={embeddings} narrator_attempts={settings.narrator_max_attempts} "
        f"log_level={settings.log_level} debug={settings.debug}"
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Drain background extraction and indexing before exit"""
    for session_id, orchestrator in list(sessions_db.items()):
        if orchestrator.tasks.pending or orchestrator.is_indexing:
            logger.info(f"Waiting for background work of {session_id}")
        await orchestrator.drain()


@app.get("/")
async def root():
    """Root endpoint"""
    logger.debug("Root endpoint called")
    return {
        "message": "Taleweaver",
        "version": "0.1.0",
        "status": "running",
        "log_level": settings.log_level,
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    logger.debug("Health check endpoint called")
    return {"status": "healthy", "sessions": len(sessions_db)}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(
        "taleweaver.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.log_level == "VERBOSE" else settings.log_level.lower(),
    )
