"""Scheduled jobs for the tasks module.

The auto-award scan runs on an interval. It only ever goes through the same
lifecycle gate as manual awards, so a scan racing a proposer's award settles on
exactly one winner.
"""

import logging
from datetime import UTC, datetime

from src.core.errors import ConcurrentModificationError, InvalidTransitionError, NotFoundError, StorageError
from src.core.logging import span
from src.domain.task import TaskStatus
from src.models.service_models import AutoAwardSummary
from src.modules.tasks import repository, service


logger = logging.getLogger(__name__)


async def auto_award_expired_tasks(*, now: datetime | None = None) -> AutoAwardSummary:
    """Award every open task whose bidding window has elapsed.

    Per-task failures are logged and left for the next scan. Failing to list open
    tasks propagates so the job tracker records the failed run.

    Raises:
        StorageError: The open tasks could not be listed
    """
    with span("scheduler_jobs.auto_award_expired_tasks"):
        at = now or datetime.now(UTC)
        summary = AutoAwardSummary()

        open_tasks = await repository.list_tasks_by_status(TaskStatus.OPEN)
        for task in open_tasks:
            if task.id is None or not service.bidding_window_elapsed(task, at):
                continue

            summary.scanned += 1
            try:
                applied = await service.auto_award(task_id=task.id, now=at)
            except (InvalidTransitionError, NotFoundError) as e:
                # Awarded, deleted or otherwise moved on since it was listed
                logger.info("Skipping auto-award of task %s: %s", task.id, e)
                summary.skipped += 1
                continue
            except (ConcurrentModificationError, StorageError) as e:
                logger.warning("Auto-award of task %s deferred to next scan: %s", task.id, e)
                summary.failed += 1
                continue

            if applied.changed:
                summary.awarded.append(task.id)
            else:
                summary.skipped += 1

        if summary.scanned:
            logger.info(
                "Auto-award scan complete: %d awarded, %d skipped, %d failed",
                len(summary.awarded),
                summary.skipped,
                summary.failed,
            )
        return summary
