"""
FastAPI application: contact search and grouping service.

Startup opens the Postgres pool, then Redis; shutdown waits briefly for
in-process grouping jobs and closes both in reverse order.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.features.contact_intelligence import contacts_router, job_queue
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.middleware import RateLimitHeadersMiddleware, RequestContextMiddleware
from app.routes import health
from app.services.redis_client import cache_store

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)

JOB_DRAIN_TIMEOUT_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis connection")
        await cache_store.initialize()
        startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            try:
                await cache_store.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    # Inline jobs still need the pool and Redis
    if job_queue.pending:
        logger.info("Waiting for in-process jobs", pending=job_queue.pending)
        try:
            await job_queue.drain(timeout=JOB_DRAIN_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error("Error draining job queue", error=str(e))
            shutdown_errors.append(f"Jobs: {e}")

    try:
        logger.info("Closing Redis connection")
        await cache_store.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Contact Intelligence",
    description="Semantic contact search and AI-assisted contact grouping",
    version="0.1.0",
    lifespan=lifespan,
)

# Starlette runs the last-added middleware first; request context must wrap everything
app.add_middleware(RateLimitHeadersMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(health.router)
app.include_router(contacts_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
