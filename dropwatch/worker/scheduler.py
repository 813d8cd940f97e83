"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from dropwatch.config import settings
from dropwatch.worker.tasks import task_runner

logger = logging.getLogger(__name__)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Hot windows are refreshed every settings.hot_window_interval_minutes
    - Availability scans run every settings.availability_scan_interval_minutes
    - The hour model is retrained daily at settings.hour_model_train_hour (UTC)
    - The classifier calibration is refit weekly when calibrator_enabled is set

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    hot_interval = max(1, settings.hot_window_interval_minutes)
    scan_interval = max(1, settings.availability_scan_interval_minutes)

    scheduler.add_job(
        task_runner.run_hot_window_refresh,
        IntervalTrigger(minutes=hot_interval),
        id="hot_window_refresh",
        name="Refresh hot-window markers",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.run_availability_scan,
        IntervalTrigger(minutes=scan_interval),
        id="availability_scan",
        name="Check retailer availability",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=300,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.run_hour_model_training,
        CronTrigger(hour=settings.hour_model_train_hour, minute=0),
        id="hour_model_training",
        name="Train drop-window hour model",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    if settings.calibrator_enabled:
        scheduler.add_job(
            task_runner.run_calibrator_training,
            CronTrigger(day_of_week="sun", hour=settings.hour_model_train_hour, minute=30),
            id="calibrator_training",
            name="Fit drop classifier calibration",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    logger.info(
        "Scheduler configured: hot windows every %d minutes, availability scan every %d minutes, "
        "hour model at %02d:00 UTC, calibrator %s",
        hot_interval,
        scan_interval,
        settings.hour_model_train_hour,
        "weekly on Sundays" if settings.calibrator_enabled else "disabled",
    )

    return scheduler
