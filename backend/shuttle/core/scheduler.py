"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(tracker) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from shuttle.config import settings

    scheduler = AsyncIOScheduler()

    # Drop old ride statuses once a day, before the morning run
    scheduler.add_job(
        tracker.purge_stale,
        "cron",
        hour=settings.purge_hour,
        args=[settings.shuttle_retention_days],
        id="purge_shuttles",
        name="Purge stale shuttle statuses",
        max_instances=1,
    )

    return scheduler
