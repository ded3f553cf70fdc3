"""copro-tasks - Maintenance job marketplace for a residential building."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from src.core.config import constants, settings
from src.core.db_client import close_connection, init_db
from src.core.errors import TaskEngineError
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.scheduler import start_scheduler, stop_scheduler
from src.core.scheduler_tracker import job_tracker
from src.interface.task_router import router as task_router, task_engine_error_handler
from src.services.notification_service import drain_background_deliveries


logger = logging.getLogger(__name__)

SCHEDULED_JOBS = (constants.AUTO_AWARD_JOB_NAME,)


def validate_startup_configuration() -> None:
    """Log the workflow rules in force and which optional integrations are missing.

    Email is optional: without a relay key notifications are logged and dropped.
    """
    logger.info(
        "startup_validation",
        extra={
            "stage": "workflow",
            "council_min_approvals": settings.council_min_approvals,
            "max_task_price": settings.max_task_price,
            "bidding_window_hours": settings.bidding_window_hours,
        },
    )

    if not settings.enable_notifications:
        logger.info("startup_validation", extra={"service": "email", "status": "disabled"})
    elif not settings.email_api_key:
        logger.warning("startup_validation", extra={"service": "email", "status": "not configured"})
    else:
        logger.info("startup_validation", extra={"service": "email", "status": "ok"})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    configure_logfire()
    validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    if settings.scheduler_enabled:
        start_scheduler()
    try:
        yield
    finally:
        if settings.scheduler_enabled:
            stop_scheduler()
        await drain_background_deliveries()
        await close_connection()


app = FastAPI(
    title="copro-tasks",
    description="Maintenance job marketplace for a residential building",
    version="0.1.0",
    lifespan=lifespan,
)

instrument_fastapi(app)

app.include_router(task_router)
app.add_exception_handler(TaskEngineError, task_engine_error_handler)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/scheduler")
async def scheduler_health_check() -> JSONResponse:
    """Report the auto-award job's recent runs.

    Degraded while the job is on a failure streak; critical once a streak reached
    the dead letter queue.
    """
    job_statuses = {name: await job_tracker.get_job_status(name) for name in SCHEDULED_JOBS}
    dlq = job_tracker.get_dead_letter_queue()

    if dlq:
        overall_status = "critical"
    elif any(status["consecutive_failures"] > 0 for status in job_statuses.values()):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return JSONResponse(
        content={
            "status": overall_status,
            "jobs": job_statuses,
            "dead_letter_queue_size": len(dlq),
            "dead_letter_queue": dlq,
        },
        status_code=200 if overall_status == "healthy" else 503,
    )
