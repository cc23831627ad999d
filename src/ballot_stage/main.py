# src/ballot_stage/main.py
"""Main entry point for the Ballot Stage application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ballot_stage import __version__
from ballot_stage.api.v1 import vote_bias_router, vote_cache_router, votes_router
from ballot_stage.core.settings import settings
from ballot_stage.services.cache import get_cache_adapter
from ballot_stage.services.cache_sync import CacheSyncWorker
from ballot_stage.services.circuit_breaker import breaker_states
from ballot_stage.services.errors import EngineError, StoreUnavailableError
from ballot_stage.services.tally_updates import shutdown_tally_update_queue

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_TIMEOUT_SECONDS = 5.0

# Initialize FastAPI app
app = FastAPI(
    title="Ballot Stage API",
    description="Award voting engine with cached tallies and administrator bias",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(votes_router, prefix="/api/v1")
app.include_router(vote_cache_router, prefix="/api/v1")
app.include_router(vote_bias_router, prefix="/api/v1")


def error_response(exc: EngineError) -> JSONResponse:
    """Render an engine error as its JSON envelope."""
    headers = None
    if exc.retryable and exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.to_dict()},
        headers=headers,
    )


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    return error_response(exc)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Unhandled database error on %s: %s", request.url.path, exc, exc_info=True)
    return error_response(
        StoreUnavailableError(
            "The database is temporarily unavailable",
            retry_after=settings.store_unavailable_retry_after_seconds,
        )
    )


@app.on_event("startup")
async def on_startup() -> None:
    if settings.cache_sync_enabled:
        worker = CacheSyncWorker()
        await worker.start()
        app.state.cache_sync_worker = worker
    else:
        app.state.cache_sync_worker = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: CacheSyncWorker | None = getattr(app.state, "cache_sync_worker", None)
    if worker:
        await worker.stop()
    shutdown_tally_update_queue(SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
    get_cache_adapter().close()


@app.get("/health")
async def health_check() -> dict[str, object]:
    """Health check endpoint to verify the service and its dependencies."""
    breakers = breaker_states()
    healthy = all(state["healthy"] for state in breakers.values())
    return {
        "status": "ok" if healthy else "degraded",
        "cache": get_cache_adapter().status()["backend"],
        "breakers": {name: state["state"] for name, state in breakers.items()},
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Ballot Stage API",
        "version": __version__,
        "description": "Award voting engine with cached tallies and administrator bias",
        "docs": "/docs",
        "redoc": "/redoc"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ballot_stage.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
