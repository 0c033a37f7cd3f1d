"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException

from hiring_pipeline.api.candidates import router as candidates_router
from hiring_pipeline.api.errors import setup_exception_handlers
from hiring_pipeline.api.jobs import router as jobs_router
from hiring_pipeline.api.sla import router as sla_router
from hiring_pipeline.core.database import db
from hiring_pipeline.core.logging import logger, setup_logging
from hiring_pipeline.middleware import (
    LoggingMiddleware,
    RequestIDMiddleware,
    setup_cors,
    setup_rate_limiting,
)

# Configure logging
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    logger.info("application_starting")
    await db.connect()
    logger.info("application_ready")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await db.disconnect()
    logger.info("application_stopped")


# Create FastAPI app
app = FastAPI(
    title="Hiring Pipeline Engine",
    description="Stage topology, auto-rejection rules, stage ledger and SLA alerts for hiring pipelines",
    version="1.0.0",
    lifespan=lifespan,
)

# Last added runs first: request ID must be bound before the logging middleware runs
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
setup_cors(app)
setup_rate_limiting(app)
setup_exception_handlers(app)

# Include routers
app.include_router(jobs_router)
app.include_router(candidates_router)
app.include_router(sla_router)


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """
    Health check endpoint.

    Verifies database connectivity and reports pool stats.

    Returns:
        dict: Health status with database and pool information

    Raises:
        HTTPException: 503 if database is unavailable
    """
    try:
        await db.fetchval("SELECT 1")

        if not db.pool:
            raise RuntimeError("Database pool not initialized")

        pool_size = db.pool.get_size()
        pool_free = db.pool.get_idle_size()

        return {
            "status": "healthy",
            "database": "connected",
            "pool": {
                "size": pool_size,
                "free": pool_free,
                "in_use": pool_size - pool_free,
            },
        }
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Database unavailable") from e


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Hiring Pipeline Engine"}
