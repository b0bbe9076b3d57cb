"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from dropwatch.config import settings
from dropwatch.worker.tasks import TaskRunner, task_runner

logger = logging.getLogger(__name__)


def setup_scheduler(runner: TaskRunner = task_runner) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Candidate checks every url_candidate_check_interval_minutes
    - Hour weight model daily, one hour before classifier training
    - Drop classifier training daily at drop_classifier_train_hour (UTC)

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    check_interval = max(1, int(settings.url_candidate_check_interval_minutes))
    train_hour = settings.drop_classifier_train_hour % 24

    scheduler.add_job(
        runner.run_candidate_checks,
        IntervalTrigger(minutes=check_interval),
        id="candidate_check",
        name="Check candidate URLs for drops",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    scheduler.add_job(
        runner.train_hour_weights,
        CronTrigger(hour=(train_hour - 1) % 24, minute=0),
        id="hour_weights",
        name="Train per-retailer hour weights",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        runner.train_drop_classifier,
        CronTrigger(hour=train_hour, minute=0),
        id="drop_classifier",
        name="Train drop classifier calibration",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        f"Scheduler configured: candidate checks every {check_interval}m, "
        f"training daily at {train_hour:02d}:00 UTC"
    )
    return scheduler
