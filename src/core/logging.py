"""Logging and observability configuration using Pydantic Logfire.

Modules log through the standard library (``logging.getLogger(__name__)``); Logfire
captures those records and adds the spans opened around service operations.

Structured context:
    log_with_task_context(logger, "info", "Bid placed", task_id="12", amount=10)
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


logger = logging.getLogger(__name__)


def configure_logfire() -> None:
    """Configure Pydantic Logfire; spans stay local unless a token is set."""
    logfire.configure(
        token=settings.logfire_token,
        service_name="copro-tasks",
        service_version="0.1.0",
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )
    # Outbound calls to the email relay
    logfire.instrument_httpx()
    logger.info("Logfire configured", extra={"environment": settings.environment})


def instrument_fastapi(app: FastAPI) -> None:
    """Add Logfire request tracing to the FastAPI application."""
    logfire.instrument_fastapi(app)
    logger.info("FastAPI instrumentation configured")


def span(name: str) -> logfire.LogfireSpan:
    """Open a span around a service operation.

    Usage:
        with span("task_service.place_bid"):
            ...
    """
    return logfire.span(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log a message with structured context fields.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        **context: Additional context fields (task_id, actor_id, status, etc.)
    """
    getattr(logger, level.lower())(message, extra=context)


def log_with_task_context(
    logger: logging.Logger,
    level: str,
    message: str,
    task_id: str | None = None,
    **extra: object,
) -> None:
    """Log a message tagged with the task it concerns."""
    context = {"task_id": task_id, **extra} if task_id else extra
    log_with_context(logger, level, message, **context)
