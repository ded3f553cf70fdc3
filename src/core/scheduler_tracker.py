"""Job execution tracking and monitoring for scheduled jobs."""

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from src.core.admin_notifier import notify_admins
from src.core.config import constants
from src.core.errors import ErrorCategory, StorageError


logger = logging.getLogger(__name__)


class JobTracker:
    """Track job execution history and health status in memory."""

    def __init__(self) -> None:
        self._storage: dict[str, dict[str, Any]] = {}
        self._dead_letter_queue: deque[tuple[str, str, str]] = deque(maxlen=constants.TRACKER_DEAD_LETTER_QUEUE_MAXLEN)

    def _job(self, job_name: str) -> dict[str, Any]:
        return self._storage.setdefault(job_name, {})

    async def record_job_start(self, job_name: str) -> None:
        """Record job execution start."""
        self._job(job_name)["current_run"] = datetime.now(UTC).isoformat()

    async def record_job_success(self, job_name: str) -> None:
        """Record successful job execution and reset the failure streak."""
        job = self._job(job_name)
        job["last_success"] = datetime.now(UTC).isoformat()
        job["consecutive_failures"] = 0
        job["success_count"] = job.get("success_count", 0) + 1
        job.pop("current_run", None)

    async def record_job_failure(self, job_name: str, error: str) -> int:
        """Record failed job execution.

        Returns:
            Number of consecutive failures including this one
        """
        job = self._job(job_name)
        job["last_failure"] = datetime.now(UTC).isoformat()
        job["last_error"] = error[:500]  # Truncate long errors

        consecutive_failures = job.get("consecutive_failures", 0) + 1
        job["consecutive_failures"] = consecutive_failures
        job["failure_count"] = job.get("failure_count", 0) + 1
        job.pop("current_run", None)

        return consecutive_failures

    async def get_job_status(self, job_name: str) -> dict[str, Any]:
        """Get job execution status."""
        job = self._storage.get(job_name, {})
        return {
            "job_name": job_name,
            "last_success": job.get("last_success"),
            "last_failure": job.get("last_failure"),
            "last_error": job.get("last_error"),
            "consecutive_failures": job.get("consecutive_failures", 0),
            "success_count": job.get("success_count", 0),
            "failure_count": job.get("failure_count", 0),
            "currently_running": "current_run" in job,
            "current_run_started": job.get("current_run"),
        }

    async def add_to_dead_letter_queue(self, job_name: str, error: str, context: str) -> None:
        """Add persistently failed job to dead letter queue."""
        self._dead_letter_queue.append((job_name, error, context))

        logger.error(
            "Job added to dead letter queue",
            extra={
                "job_name": job_name,
                "error": error,
                "context": context,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

    def get_dead_letter_queue(self) -> list[dict[str, str]]:
        """Get all items in dead letter queue."""
        return [
            {
                "job_name": job_name,
                "error": error,
                "context": context,
            }
            for job_name, error, context in self._dead_letter_queue
        ]

    def reset(self) -> None:
        """Forget all history."""
        self._storage.clear()
        self._dead_letter_queue.clear()


# Global job tracker instance
job_tracker = JobTracker()


async def run_tracked_job(job_func: Callable[[], Awaitable[object]], job_name: str) -> None:
    """Execute one run of a scheduled job, recording its outcome. Never raises.

    A failed run is not retried here: interval jobs retry on their next tick. Admins
    are alerted once the failure streak reaches the configured threshold.
    """
    await job_tracker.record_job_start(job_name)

    try:
        await job_func()
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        consecutive_failures = await job_tracker.record_job_failure(job_name, error)
        logger.error(
            "%s failed",
            job_name,
            extra={"error": error, "consecutive_failures": consecutive_failures},
        )

        if consecutive_failures == constants.TRACKER_CONSECUTIVE_FAILURE_THRESHOLD:
            await job_tracker.add_to_dead_letter_queue(
                job_name=job_name,
                error=error,
                context=f"Failed {consecutive_failures} consecutive times",
            )
            category = (
                ErrorCategory.STORAGE_UNAVAILABLE if isinstance(e, StorageError) else ErrorCategory.SCHEDULED_JOB_FAILED
            )
            await notify_admins(
                message=f"Scheduled job '{job_name}' has failed {consecutive_failures} times in a row: {error}",
                severity="critical",
                category=category,
            )
        return

    await job_tracker.record_job_success(job_name)
    logger.debug("%s completed successfully", job_name)
