"""
FastAPI application with database, Redis and scheduler lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from leadflow.config import settings
from leadflow.db.pool import db_pool
from leadflow.infrastructure.observability.logging import get_logger, setup_logging
from leadflow.jobs.lead_assignment_job import start_scheduler
from leadflow.routes import agents, assignment, calendar_auth, health, heartbeat, meetings
from leadflow.routes import settings as settings_routes
from leadflow.services.calendar.google_client import google_calendar_service
from leadflow.services.infrastructure.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []
    scheduler_handle = None

    try:
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        await fast_redis.initialize()
        startup_tasks.append("redis")

        if settings.SCHEDULER_ENABLED:
            scheduler_handle = await start_scheduler()
            startup_tasks.append("scheduler")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
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

    # Stop the timer first so no pass starts against closed resources
    if scheduler_handle is not None:
        try:
            await scheduler_handle.stop()
        except Exception as e:
            logger.error("Error stopping scheduler", error=str(e))
            shutdown_errors.append(f"Scheduler: {e}")

    try:
        await google_calendar_service.close()
    except Exception as e:
        logger.error("Error closing calendar client", error=str(e))
        shutdown_errors.append(f"Calendar: {e}")

    try:
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Leadflow",
    description="Multi-tenant lead distribution with Google Calendar meetings",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(heartbeat.router)
app.include_router(agents.router)
app.include_router(settings_routes.router)
app.include_router(assignment.router)
app.include_router(calendar_auth.router)
app.include_router(meetings.router)


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
