"""Scheduler for background jobs (auto-award of expired bidding windows)."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.core.config import constants, settings
from src.core.scheduler_tracker import run_tracked_job
from src.modules.tasks.scheduler_jobs import auto_award_expired_tasks


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def run_auto_award() -> None:
    """One tracked auto-award scan."""
    await run_tracked_job(auto_award_expired_tasks, constants.AUTO_AWARD_JOB_NAME)


def start_scheduler() -> None:
    """Start the scheduler and register all jobs.

    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")

    # A slow scan must not overlap the next one; missed ticks collapse into one run
    scheduler.add_job(
        run_auto_award,
        trigger=IntervalTrigger(seconds=settings.auto_award_interval_seconds),
        id=constants.AUTO_AWARD_JOB_NAME,
        name="Auto-Award Expired Bidding Windows",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    logger.info("Scheduled auto-award job: every %ds", settings.auto_award_interval_seconds)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")
